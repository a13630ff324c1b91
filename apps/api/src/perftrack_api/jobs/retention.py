"""Daily retention pruning of the performance event log."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from perftrack_api.core.settings import Settings, settings as default_settings
from perftrack_api.db.session import async_session
from perftrack_api.services.events import EventStore

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def run_retention_cleanup(
    *,
    session_factory: SessionFactory | None = None,
    retention_days: int | None = None,
    config: Settings | None = None,
) -> Dict[str, Any]:
    """Prune events older than the configured retention window."""

    config = config or default_settings
    if not config.auto_cleanup:
        logger.info("Retention cleanup skipped", reason="auto_cleanup is false")
        return {"skipped": True, "removed": 0}

    days = retention_days or config.data_retention_days
    factory = session_factory or async_session
    maybe_session = factory()
    session: AsyncSession = maybe_session if isinstance(maybe_session, AsyncSession) else await maybe_session

    async with session as managed_session:
        store = EventStore(managed_session)
        await store.ensure_schema()
        removed = await store.cleanup_old_data(days)

    summary = {"skipped": False, "retentionDays": days, "removed": removed}
    logger.bind(summary=summary).info("Retention cleanup completed")
    return summary


__all__ = ["run_retention_cleanup"]
