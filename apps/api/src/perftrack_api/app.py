from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from loguru import logger

from perftrack_api.core.settings import settings
from perftrack_api.db.session import async_session, engine
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .scheduling import JobScheduler
from .services.catalog import build_product_lookup
from .services.events import ensure_schema


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


def _schedule_path() -> Path:
    schedule_path = Path(settings.retention_schedule_path)
    if not schedule_path.is_absolute():
        schedule_path = Path(__file__).resolve().parent.parent.parent / schedule_path
    return schedule_path


@asynccontextmanager
async def lifespan(app: FastAPI):
    await ensure_schema(engine)

    product_lookup = build_product_lookup(settings)
    app.state.product_lookup = product_lookup

    schedule_path = _schedule_path()
    retention_scheduler = JobScheduler(
        session_factory=_session_factory,
        config_path=schedule_path,
    )
    app.state.retention_scheduler = retention_scheduler

    scheduler_enabled = settings.retention_scheduler_enabled
    if scheduler_enabled:
        try:
            retention_scheduler.start()
        except FileNotFoundError as exc:
            logger.exception("Retention scheduler failed to start", error=str(exc))
        else:
            logger.info(
                "Retention scheduler enabled",
                schedule_path=str(schedule_path),
                retention_days=settings.data_retention_days,
            )
    else:
        logger.info(
            "Retention scheduler disabled",
            reason="retention_scheduler_enabled is false",
        )

    try:
        yield
    finally:
        if scheduler_enabled and retention_scheduler.is_running:
            await retention_scheduler.stop()
        aclose = getattr(product_lookup, "aclose", None)
        if aclose is not None:
            await aclose()


def create_app() -> FastAPI:
    """Application factory for the perftrack metrics service."""
    configure_logging(
        service_name="perftrack-api",
        environment=settings.environment,
        version=APP_VERSION,
    )

    app = FastAPI(
        title="Perftrack API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="perftrack-api",
        service_version=APP_VERSION,
        environment=settings.environment,
        enabled=settings.tracing_enabled,
    )

    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
