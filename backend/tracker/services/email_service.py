"""Email delivery service with HTML templates.

Sending is synchronous (smtplib); async callers run it in a worker thread
via ``asyncio.to_thread``.
"""

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING

from tracker.config import get_settings

if TYPE_CHECKING:
    from tracker.services.report_generator import DailyReportData

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    """SMTP send failed."""


# ── HTML Templates ──

_BASE_TEMPLATE = """
<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
<body style="margin:0; padding:0; font-family:Arial,Helvetica,sans-serif; background:#f4f6f8; color:#333333;">
<div style="max-width:600px; margin:0 auto; padding:24px;">
  <div style="background:#2196F3; color:white; padding:20px; text-align:center; border-radius:8px 8px 0 0;">
    <h1 style="font-size:24px; margin:0;">{title}</h1>
    <p style="font-size:13px; margin:6px 0 0;">{subtitle}</p>
  </div>
  <div style="background:#f9f9f9; padding:20px; border-radius:0 0 8px 8px;">
    {content}
  </div>
  <div style="text-align:center; margin-top:20px; font-size:12px; color:#666666;">
    <p style="margin:0;">This is an automated daily update from Portfolio Tracker.</p>
    <p style="margin:4px 0 0;">To modify your notification settings, please log in to your account.</p>
  </div>
</div>
</body>
</html>
"""

_METRIC_BLOCK = """
<div style="background:white; padding:15px; margin:10px 0; border-radius:5px; border-left:4px solid #2196F3;">
  <h3 style="margin:0; font-size:14px; color:#666666;">{label}</h3>
  <div style="font-size:24px; font-weight:bold; margin:5px 0; color:{color};">{value}</div>
</div>
"""

_POSITIVE = "#4CAF50"
_NEGATIVE = "#F44336"


def _render_template(content_html: str, title: str, subtitle: str = "") -> str:
    """Render email content into the base template."""
    return _BASE_TEMPLATE.format(title=title, subtitle=subtitle, content=content_html)


def _signed_money(value: float) -> str:
    sign = "+" if value >= 0 else "-"
    return f"{sign}${abs(value):,.2f}"


def _color(value: float) -> str:
    return _POSITIVE if value >= 0 else _NEGATIVE


# ── Template builders ──

def template_daily_update(
    report: "DailyReportData",
    first_name: str | None = None,
    alert_threshold: float | None = None,
) -> tuple[str, str, str]:
    """Returns (subject, html_body, text_body) for the daily portfolio update."""
    day = report.report_date.strftime("%A, %B %d, %Y").replace(" 0", " ")
    subject = f"Daily Portfolio Update - {day}"

    content = _METRIC_BLOCK.format(
        label="Portfolio Value", value=f"${report.portfolio_value:,.2f}", color="#333333",
    )
    content += _METRIC_BLOCK.format(
        label="Daily Change",
        value=f"{_signed_money(report.daily_change)} ({report.daily_change_percent:+.2f}%)",
        color=_color(report.daily_change_percent),
    )

    movers = report.significant_movers[:5]
    if movers:
        heading = "Significant Movers"
        if alert_threshold is not None:
            heading += f" (&gt;{alert_threshold:g}% change)"
        rows = "".join(
            f"""
            <tr>
              <td style="padding:8px; border-bottom:1px solid #dddddd;"><strong>{m.symbol}</strong><br><small>{m.quantity:g} shares</small></td>
              <td style="padding:8px; border-bottom:1px solid #dddddd; text-align:right; color:{_color(m.price_change_percent)}; font-weight:bold;">{m.price_change_percent:+.2f}%</td>
            </tr>"""
            for m in movers
        )
        content += f"""
        <h3 style="font-size:16px; margin:20px 0 8px;">{heading}</h3>
        <table style="width:100%; border-collapse:collapse; background:white;">{rows}</table>
        """

    sectors = report.sector_performance[:5]
    if sectors:
        rows = "".join(
            f"""
            <tr>
              <td style="padding:8px; border-bottom:1px solid #dddddd;">{s.sector}</td>
              <td style="padding:8px; border-bottom:1px solid #dddddd; color:{_color(s.change_percent)};">{s.change_percent:+.2f}%</td>
              <td style="padding:8px; border-bottom:1px solid #dddddd;">{s.weight:.2f}%</td>
            </tr>"""
            for s in sectors
        )
        content += f"""
        <h3 style="font-size:16px; margin:20px 0 8px;">Sector Performance</h3>
        <table style="width:100%; border-collapse:collapse; background:white;">
          <tr><th style="padding:8px; text-align:left; background:#f2f2f2;">Sector</th><th style="padding:8px; text-align:left; background:#f2f2f2;">Return</th><th style="padding:8px; text-align:left; background:#f2f2f2;">Weight</th></tr>
          {rows}
        </table>
        """

    content += f"""
    <div style="background:white; padding:15px; margin:10px 0; border-radius:5px; border-left:4px solid #2196F3;">
      <h3 style="margin:0 0 6px; font-size:14px; color:#666666;">Market Summary</h3>
      <p style="margin:0; font-size:14px; line-height:1.6;">{report.market_summary}</p>
    </div>
    """
    html = _render_template(content, title="Daily Portfolio Update", subtitle=day)

    lines = [
        f"Daily Portfolio Update - {day}",
        "",
        f"Hello {first_name or 'there'},",
        "",
        "Here's your daily portfolio update:",
        "",
        f"Portfolio Value: ${report.portfolio_value:,.2f}",
        f"Daily Change: {_signed_money(report.daily_change)} ({report.daily_change_percent:+.2f}%)",
        "",
    ]
    if movers:
        lines.append("Significant Movers:")
        lines.extend(f"- {m.symbol}: {m.price_change_percent:+.2f}%" for m in movers)
    else:
        lines.append("No significant movers today.")
    if sectors:
        lines += ["", "Top Sector Performance:"]
        lines.extend(f"- {s.sector}: {s.change_percent:+.2f}%" for s in sectors[:3])
    lines += [
        "",
        "Market Summary:",
        report.market_summary,
        "",
        "---",
        "This is an automated daily update from Portfolio Tracker.",
        "To modify your notification settings, please log in to your account.",
    ]
    return subject, html, "\n".join(lines)


# ── Sending ──

def smtp_configured() -> bool:
    return bool(get_settings().smtp_host)


def send_email(to_address: str, subject: str, html_body: str, text_body: str | None = None) -> None:
    """Send an email via SMTP. Raises EmailDeliveryError on failure.

    Synchronous; async callers should run it in a worker thread.
    """
    settings = get_settings()

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = settings.email_from
    msg["To"] = to_address
    if text_body:
        msg.attach(MIMEText(text_body, "plain"))
    msg.attach(MIMEText(html_body, "html"))

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=10) as server:
            if settings.smtp_use_tls:
                server.starttls()
            if settings.smtp_user and settings.smtp_password:
                server.login(settings.smtp_user, settings.smtp_password)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        raise EmailDeliveryError(f"SMTP send to {to_address} failed: {e}") from e

    logger.info("Email sent to %s: %s", to_address, subject)
