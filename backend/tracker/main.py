import json
import logging
import sys
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from tracker.config import Settings, get_settings
from tracker.db.session import async_session_factory, engine
from tracker.api.v1.router import api_router
from tracker.integrations.market.factory import build_gateway
from tracker.integrations.market.gateway import MarketDataGateway
from tracker.services.notification_service import EmailDeliveryChannel
from tracker.services.report_generator import DailyReportGenerator
from tracker.services.repository import SqlPortfolioRepository
from tracker.services.scheduler_service import DailyUpdateScheduler


# ── JSON Structured Logging ──────────────────────────────────


class JSONFormatter(logging.Formatter):
    """Outputs log records as single-line JSON for production log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False)


def setup_logging():
    """Configure structured JSON logging for production."""
    settings = get_settings()

    root = logging.getLogger()
    root.setLevel(logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if settings.debug:
        handler.setFormatter(logging.Formatter(
            "[%(asctime)s] %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
    else:
        handler.setFormatter(JSONFormatter())

    root.handlers = [handler]

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


logger = logging.getLogger("tracker")


# ── Wiring ───────────────────────────────────────────────────


def build_scheduler(settings: Settings, gateway: MarketDataGateway) -> DailyUpdateScheduler:
    repository = SqlPortfolioRepository(async_session_factory)
    return DailyUpdateScheduler.from_settings(
        settings,
        repository=repository,
        report_generator=DailyReportGenerator(repository, gateway),
        delivery_channel=EmailDeliveryChannel(
            repository, retry_attempts=settings.notification_retry_attempts,
        ),
    )


# ── Lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    settings = get_settings()
    from tracker.core.metrics import APP_INFO
    APP_INFO.info({"version": "0.1.0", "name": "Portfolio Tracker"})
    logger.info("Portfolio tracker starting up")

    gateway = build_gateway(settings)
    scheduler = build_scheduler(settings, gateway)
    app.state.gateway = gateway
    app.state.scheduler = scheduler

    if settings.enable_scheduler:
        scheduler.arm()
    else:
        logger.info("Daily update scheduler disabled (ENABLE_SCHEDULER=false)")

    yield

    logger.info("Portfolio tracker shutting down")
    scheduler.disarm()
    await gateway.aclose()
    await engine.dispose()


# ── App Factory ──────────────────────────────────────────────


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "## Portfolio Tracker: daily update engine\n\n"
            "- **Daily updates**: cron-scheduled, batched report generation and email delivery\n"
            "- **Market data**: Alpha Vantage with Yahoo Finance failover\n\n"
            "### Access\n"
            "Scheduler endpoints are restricted to the configured admin IP allow-list.\n"
        ),
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=[
            {"name": "scheduler", "description": "Daily update scheduler status, start/stop and manual triggers"},
        ],
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With"],
    )

    # Request timing middleware
    @app.middleware("http")
    async def timing_middleware(request: Request, call_next):
        from tracker.core.metrics import HTTP_REQUESTS, HTTP_REQUEST_DURATION

        start = time.monotonic()
        response: Response = await call_next(request)
        duration = time.monotonic() - start

        path = request.url.path
        # Collapse parameterized paths for cardinality control
        if "/api/v1/" in path:
            parts = path.split("/")
            parts = [
                "<id>" if len(p) > 20 and "-" in p else p
                for p in parts
            ]
            path = "/".join(parts)

        HTTP_REQUESTS.labels(
            method=request.method,
            path=path,
            status_code=str(response.status_code),
        ).inc()
        HTTP_REQUEST_DURATION.labels(
            method=request.method,
            path=path,
        ).observe(duration)

        return response

    app.include_router(api_router, prefix="/api/v1")

    # ── Prometheus metrics endpoint ──────────────────────────

    @app.get("/metrics")
    async def metrics():
        from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST,
        )

    # ── Health check ─────────────────────────────────────────

    @app.get("/health")
    async def health(request: Request):
        from sqlalchemy import text

        checks = {"status": "ok"}
        overall_ok = True

        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception as e:
            checks["database"] = f"error: {e}"
            overall_ok = False

        scheduler = getattr(request.app.state, "scheduler", None)
        if scheduler is not None:
            current = scheduler.status()
            checks["scheduler"] = {
                "armed": current.is_running,
                "processing": current.is_processing,
            }

        checks["status"] = "ok" if overall_ok else "degraded"
        return checks

    return app


app = create_app()
