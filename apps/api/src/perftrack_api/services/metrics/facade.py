"""Single entry point for computed storefront metrics."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Mapping

from loguru import logger
from opentelemetry import trace

from perftrack_api.domain.analytics import (
    DateRange,
    EventType,
    FunnelCounts,
    ProductPerformance,
    ProductSortField,
    StatsBundle,
    TimelineInterval,
    TimelineSeries,
)
from perftrack_api.domain.events import EventPayload, RequestContext
from perftrack_api.services.analytics.aggregation import AggregationEngine
from perftrack_api.services.cache import Hit, MetricsCache, derive_cache_key
from perftrack_api.services.events.store import EventStore, sanitize_event_type

_tracer = trace.get_tracer(__name__)


class MetricsFacade:
    """Serve metric bundles through the cache: hit returns, miss computes then stores.

    Callers never reach the aggregation engine directly, so every bundle handed
    out has passed through the cache. Missing date bounds are filled with the
    trailing 30-day window before the cache key is derived.
    """

    def __init__(
        self,
        store: EventStore,
        engine: AggregationEngine,
        cache: MetricsCache,
        *,
        ttl_seconds: int | None = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._cache = cache
        self._ttl_seconds = ttl_seconds

    async def get_stats(self, date_range: DateRange | None = None) -> StatsBundle:
        window = self._window(date_range)
        payload = await self._remember("stats", window.as_params(), lambda: self._compute_stats(window))
        return StatsBundle.from_dict(payload)

    async def get_top_products(
        self,
        limit: int = 10,
        date_range: DateRange | None = None,
        order_by: ProductSortField = ProductSortField.VIEWS,
    ) -> list[ProductPerformance]:
        window = self._window(date_range)
        params = {**window.as_params(), "limit": limit, "orderby": order_by}

        async def compute() -> list[dict[str, Any]]:
            products = await self._engine.get_top_products(limit, window, order_by)
            return [product.as_dict() for product in products]

        payload = await self._remember("products", params, compute)
        return [ProductPerformance.from_dict(entry) for entry in payload]

    async def get_timeline(
        self,
        interval: TimelineInterval = TimelineInterval.DAY,
        date_range: DateRange | None = None,
    ) -> TimelineSeries:
        window = self._window(date_range)
        params = {**window.as_params(), "interval": interval}

        async def compute() -> dict[str, Any]:
            series = await self._engine.get_timeline_data(interval, window)
            return series.as_dict()

        payload = await self._remember("timeline", params, compute)
        return TimelineSeries.from_dict(payload)

    async def get_funnel(self, date_range: DateRange | None = None) -> FunnelCounts:
        window = self._window(date_range)

        async def compute() -> dict[str, Any]:
            funnel = await self._engine.get_funnel_data(window)
            return funnel.as_dict()

        payload = await self._remember("funnel", window.as_params(), compute)
        return FunnelCounts.from_dict(payload)

    async def insert_event(
        self,
        payload: EventPayload | Mapping[str, Any],
        context: RequestContext | None = None,
    ) -> int | None:
        """Fire-and-forget ingestion; a completed order invalidates every cached bundle."""

        try:
            if not isinstance(payload, EventPayload):
                payload = EventPayload.from_mapping(payload)
            event_id = await self._store.insert_event(payload, context)
        except Exception:  # noqa: BLE001 - tracking never breaks the shopper flow
            logger.exception("Event ingestion failed", event_type=getattr(payload, "event_type", None))
            return None

        if event_id is not None and sanitize_event_type(payload.event_type) == EventType.ORDER_COMPLETED.value:
            await self._cache.flush()
        return event_id

    async def flush_cache(self) -> int | None:
        return await self._cache.flush()

    async def cache_stats(self) -> dict[str, Any]:
        return await self._cache.stats()

    @staticmethod
    def _window(date_range: DateRange | None) -> DateRange:
        return (date_range or DateRange()).with_defaults()

    async def _compute_stats(self, window: DateRange) -> dict[str, Any]:
        totals = await self._store.get_stats(window)
        bundle = StatsBundle(
            views=totals.views,
            add_to_cart=totals.add_to_cart,
            orders=totals.orders,
            conversion_rate=self._engine.calculate_conversion_rate(totals.views, totals.orders),
            revenue=totals.revenue,
            abandonment_rate=self._engine.calculate_abandonment_rate(totals.add_to_cart, totals.orders),
            unique_sessions=totals.unique_sessions,
        )
        return bundle.as_dict()

    async def _remember(
        self,
        scope: str,
        params: Mapping[str, Any],
        compute: Callable[[], Awaitable[Any]],
    ) -> Any:
        cache_key = derive_cache_key(scope, params)
        cached = await self._cache.get(cache_key)
        if isinstance(cached, Hit):
            logger.debug("Metrics served from cache", scope=scope, cache_key=cache_key)
            return cached.value

        with _tracer.start_as_current_span("metrics.compute", attributes={"metrics.scope": scope}):
            payload = await compute()
        await self._cache.set(cache_key, payload, self._ttl_seconds)
        logger.debug("Metrics recomputed", scope=scope, cache_key=cache_key)
        return payload


__all__ = ["MetricsFacade"]
