"""Metrics facade and its request-scoped assembly."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from perftrack_api.core.settings import Settings
from perftrack_api.services.analytics.aggregation import AggregationEngine
from perftrack_api.services.cache import build_metrics_cache
from perftrack_api.services.catalog import ProductLookup
from perftrack_api.services.events import EventStore

from .facade import MetricsFacade


def build_metrics_facade(session: AsyncSession, config: Settings, product_lookup: ProductLookup) -> MetricsFacade:
    store = EventStore(session, anonymize_ip=config.anonymize_ip)
    engine = AggregationEngine(store, product_lookup)
    cache = build_metrics_cache(config, session)
    return MetricsFacade(store, engine, cache, ttl_seconds=config.cache_duration_seconds)


__all__ = ["MetricsFacade", "build_metrics_facade"]
