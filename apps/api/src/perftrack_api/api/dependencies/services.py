"""Request-scoped assembly of the metrics services."""

from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from perftrack_api.core.settings import Settings, get_settings
from perftrack_api.db.session import get_session
from perftrack_api.services.catalog import NullProductLookup, ProductLookup
from perftrack_api.services.events import EventStore
from perftrack_api.services.metrics import MetricsFacade, build_metrics_facade
from perftrack_api.services.tracking import EventTracker


def get_product_lookup(request: Request) -> ProductLookup:
    """The lookup built at startup; absent when the lifespan has not run."""

    lookup = getattr(request.app.state, "product_lookup", None)
    return lookup if lookup is not None else NullProductLookup()


async def get_event_store(
    session: AsyncSession = Depends(get_session),
    config: Settings = Depends(get_settings),
) -> EventStore:
    return EventStore(session, anonymize_ip=config.anonymize_ip)


async def get_metrics_facade(
    session: AsyncSession = Depends(get_session),
    config: Settings = Depends(get_settings),
    product_lookup: ProductLookup = Depends(get_product_lookup),
) -> MetricsFacade:
    return build_metrics_facade(session, config, product_lookup)


async def get_event_tracker(
    facade: MetricsFacade = Depends(get_metrics_facade),
    config: Settings = Depends(get_settings),
) -> EventTracker:
    return EventTracker(facade, config)
