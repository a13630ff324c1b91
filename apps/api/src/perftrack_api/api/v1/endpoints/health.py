from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError

from perftrack_api.api.dependencies.services import get_event_store, get_metrics_facade
from perftrack_api.core.settings import Settings, get_settings
from perftrack_api.services.events import EventStore
from perftrack_api.services.metrics import MetricsFacade


router = APIRouter(prefix="/health")


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/livez", summary="Process liveness")
async def service_liveness() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    store: EventStore = Depends(get_event_store),
    facade: MetricsFacade = Depends(get_metrics_facade),
    config: Settings = Depends(get_settings),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    try:
        total = await store.count_events()
    except SQLAlchemyError as exc:
        logger.warning("Event store readiness probe failed", error=str(exc))
        components["event_store"] = ComponentStatus(status="error", detail="Event table unavailable")
        status = "error"
    else:
        components["event_store"] = ComponentStatus(status="ready", detail=f"{total} events stored")

    cache_stats = await facade.cache_stats()
    if cache_stats["cache_available"]:
        components["metrics_cache"] = ComponentStatus(
            status="ready",
            detail=f"{config.cache_backend} backend, {cache_stats['cached_items']} entries",
        )
    else:
        components["metrics_cache"] = ComponentStatus(
            status="degraded",
            detail=f"{config.cache_backend} backend unreachable; metrics are recomputed per request",
        )
        status = "degraded" if status != "error" else status

    scheduler = getattr(request.app.state, "retention_scheduler", None)
    if config.retention_scheduler_enabled and scheduler is not None:
        health = scheduler.health()
        failing = [
            job_id
            for job_id, job in health["jobs"].items()
            if job["last_error"] and job["totals"]["failures"]
        ]
        if failing:
            components["retention_scheduler"] = ComponentStatus(
                status="error", detail=f"Jobs failing: {', '.join(failing)}"
            )
            status = "error"
        elif not health["running"]:
            components["retention_scheduler"] = ComponentStatus(status="starting", detail="Scheduler not running")
            status = "degraded" if status != "error" else status
        else:
            components["retention_scheduler"] = ComponentStatus(status="ready")
    else:
        components["retention_scheduler"] = ComponentStatus(
            status="disabled",
            detail="Retention scheduler disabled via settings",
        )

    return ReadinessPayload(status=status, components=components)
