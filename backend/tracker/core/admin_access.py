"""IP allow-list guard for the scheduler control plane."""

import logging

from fastapi import Depends, HTTPException, Request, status

from tracker.config import Settings, get_settings

logger = logging.getLogger(__name__)


def _get_client_ip(request: Request) -> str:
    """Extract client IP, respecting X-Forwarded-For."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def require_admin_ip(request: Request, settings: Settings = Depends(get_settings)) -> str:
    ip = _get_client_ip(request)
    if ip not in settings.admin_ips:
        logger.warning("Rejected control-plane request from %s on %s", ip, request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access restricted to administrators",
        )
    return ip
