from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from perftrack_api.domain.analytics import DateRange, ProductSortField, TimelineInterval
from perftrack_api.domain.events import EventPayload
from perftrack_api.services.analytics.aggregation import AggregationEngine
from perftrack_api.services.cache import MemoryCacheBackend, MetricsCache
from perftrack_api.services.catalog import NullProductLookup
from perftrack_api.services.events import EventStore
from perftrack_api.services.metrics import MetricsFacade


WINDOW = DateRange(date(2024, 3, 1), date(2024, 3, 31))
MOMENT = datetime(2024, 3, 10, 12, tzinfo=timezone.utc)


class CountingEngine(AggregationEngine):
    def __init__(self, store: EventStore) -> None:
        super().__init__(store, NullProductLookup())
        self.calls = 0

    async def get_funnel_data(self, date_range=None):
        self.calls += 1
        return await super().get_funnel_data(date_range)


class ExplodingStore(EventStore):
    async def insert_event(self, payload, context=None):
        raise RuntimeError("disk full")


class StatsCountingStore(EventStore):
    def __init__(self, session) -> None:
        super().__init__(session)
        self.stats_calls = 0

    async def get_stats(self, date_range=None):
        self.stats_calls += 1
        return await super().get_stats(date_range)


def _facade(session, engine_cls=AggregationEngine, store_cls=EventStore):
    store = store_cls(session)
    engine = engine_cls(store) if engine_cls is CountingEngine else engine_cls(store, NullProductLookup())
    cache = MetricsCache(MemoryCacheBackend(), namespace="test")
    return MetricsFacade(store, engine, cache, ttl_seconds=300), engine


async def _record(facade: MetricsFacade, event_type: str, **fields) -> int | None:
    return await facade.insert_event(EventPayload(event_type=event_type, created_at=MOMENT, **fields))


@pytest.mark.asyncio
async def test_stats_bundle_combines_store_and_engine(session_factory) -> None:
    async with session_factory() as session:
        facade, _ = _facade(session)
        for _ in range(4):
            await _record(facade, "product_view", session_id="s1")
        await _record(facade, "add_to_cart", session_id="s1")
        await _record(facade, "add_to_cart", session_id="s2")
        await _record(facade, "order_completed", session_id="s2", revenue="19.90")

        stats = await facade.get_stats(WINDOW)

    assert stats.views == 4
    assert stats.add_to_cart == 2
    assert stats.orders == 1
    assert stats.conversion_rate == 25.0
    assert stats.abandonment_rate == 50.0
    assert stats.revenue == Decimal("19.90")
    assert stats.unique_sessions == 2


@pytest.mark.asyncio
async def test_repeated_reads_are_served_from_cache(session_factory) -> None:
    async with session_factory() as session:
        facade, engine = _facade(session, engine_cls=CountingEngine)
        await _record(facade, "product_view")

        first = await facade.get_funnel(WINDOW)
        second = await facade.get_funnel(WINDOW)

    assert first == second
    assert engine.calls == 1


@pytest.mark.asyncio
async def test_flush_forces_recomputation(session_factory) -> None:
    async with session_factory() as session:
        facade, engine = _facade(session, engine_cls=CountingEngine)
        await _record(facade, "product_view")

        before = await facade.get_funnel(WINDOW)
        await _record(facade, "product_view")
        stale = await facade.get_funnel(WINDOW)

        await facade.flush_cache()
        fresh = await facade.get_funnel(WINDOW)

    assert before.views == 1
    assert stale.views == 1
    assert fresh.views == 2
    assert engine.calls == 2


@pytest.mark.asyncio
async def test_completed_order_invalidates_cached_bundles(session_factory) -> None:
    async with session_factory() as session:
        facade, _ = _facade(session)
        await _record(facade, "product_view", product_id=3)

        assert (await facade.get_stats(WINDOW)).orders == 0

        assert await _record(facade, "order_completed", product_id=3, revenue="12.00") is not None
        stats = await facade.get_stats(WINDOW)

    assert stats.orders == 1
    assert stats.revenue == Decimal("12.00")


@pytest.mark.asyncio
async def test_cached_products_and_timeline_round_trip(session_factory) -> None:
    async with session_factory() as session:
        facade, _ = _facade(session)
        await _record(facade, "product_view", product_id=8)
        await _record(facade, "order_completed", product_id=8, revenue="5.55")

        products = await facade.get_top_products(5, WINDOW, ProductSortField.REVENUE)
        cached_products = await facade.get_top_products(5, WINDOW, ProductSortField.REVENUE)
        timeline = await facade.get_timeline(TimelineInterval.DAY, WINDOW)
        cached_timeline = await facade.get_timeline(TimelineInterval.DAY, WINDOW)

    assert products == cached_products
    assert products[0].product_name == "Product #8"
    assert products[0].revenue == Decimal("5.55")
    assert timeline == cached_timeline
    assert timeline.labels == ["2024-03-10"]
    assert timeline.revenue == [Decimal("5.55")]


@pytest.mark.asyncio
async def test_insert_event_never_raises(session_factory) -> None:
    async with session_factory() as session:
        facade, _ = _facade(session, store_cls=ExplodingStore)

        assert await _record(facade, "order_completed", revenue="10") is None
        assert await facade.insert_event({"event_type": ""}) is None
        assert await facade.insert_event({"product_id": 5}) is None


@pytest.mark.asyncio
async def test_missing_bounds_default_to_trailing_window(session_factory) -> None:
    async with session_factory() as session:
        facade, _ = _facade(session)
        await facade.insert_event({"event_type": "product_view"})
        await facade.insert_event(
            {"event_type": "product_view", "created_at": datetime(2001, 1, 1, tzinfo=timezone.utc)}
        )

        stats = await facade.get_stats()

    assert stats.views == 1


@pytest.mark.asyncio
async def test_mapping_without_event_type_is_dropped(session_factory) -> None:
    async with session_factory() as session:
        facade, _ = _facade(session)

        assert await facade.insert_event({"product_id": 5}) is None
        assert (await facade.get_funnel(WINDOW)).views == 0


@pytest.mark.asyncio
async def test_stats_bundle_reads_totals_once(session_factory) -> None:
    async with session_factory() as session:
        store = StatsCountingStore(session)
        facade = MetricsFacade(
            store,
            AggregationEngine(store, NullProductLookup()),
            MetricsCache(MemoryCacheBackend(), namespace="test"),
            ttl_seconds=300,
        )
        await _record(facade, "add_to_cart", session_id="s1")
        await _record(facade, "add_to_cart", session_id="s2")
        await _record(facade, "add_to_cart", session_id="s3")
        await _record(facade, "order_completed", session_id="s3", revenue="5.00")

        stats = await facade.get_stats(WINDOW)

    assert store.stats_calls == 1
    assert stats.abandonment_rate == 66.67
