from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from perftrack_api.domain.analytics import DateRange, ProductSortField, TimelineInterval
from perftrack_api.services.analytics.aggregation import AggregationEngine, bucket_label
from perftrack_api.services.catalog import NullProductLookup, ProductInfo, StaticProductLookup
from perftrack_api.services.events import EventStore


JANUARY = DateRange(date(2024, 1, 1), date(2024, 1, 31))


class ExplodingLookup:
    async def resolve(self, product_id: int) -> ProductInfo | None:
        raise RuntimeError("catalog offline")


async def _seed(store: EventStore, event_type: str, count: int, **fields) -> None:
    for _ in range(count):
        assert await store.insert_event({"event_type": event_type, **fields}) is not None


def test_conversion_rate_rounding() -> None:
    assert AggregationEngine.calculate_conversion_rate(0, 0) == 0.0
    assert AggregationEngine.calculate_conversion_rate(0, 5) == 0.0
    assert AggregationEngine.calculate_conversion_rate(100, 25) == 25.0
    assert AggregationEngine.calculate_conversion_rate(3, 1) == 33.33
    assert AggregationEngine.calculate_conversion_rate(3, 2) == 66.67


@pytest.mark.parametrize(
    ("interval", "expected"),
    [
        (TimelineInterval.HOUR, "2024-01-03 14:00"),
        (TimelineInterval.DAY, "2024-01-03"),
        (TimelineInterval.WEEK, "2024-01-01"),
        (TimelineInterval.MONTH, "2024-01"),
    ],
)
def test_bucket_label(interval: TimelineInterval, expected: str) -> None:
    assert bucket_label(datetime(2024, 1, 3, 14, 45, tzinfo=timezone.utc), interval) == expected


@pytest.mark.asyncio
async def test_abandonment_rate(session_factory) -> None:
    async with session_factory() as session:
        store = EventStore(session)
        engine = AggregationEngine(store, NullProductLookup())

        assert await engine.get_abandonment_rate(JANUARY) == 0.0

        moment = datetime(2024, 1, 10, tzinfo=timezone.utc)
        await _seed(store, "add_to_cart", 10, created_at=moment)
        await _seed(store, "order_completed", 3, created_at=moment)

        assert await engine.get_abandonment_rate(JANUARY) == 70.0


@pytest.mark.asyncio
async def test_timeline_buckets_by_day(session_factory) -> None:
    async with session_factory() as session:
        store = EventStore(session)
        engine = AggregationEngine(store, NullProductLookup())
        await _seed(store, "product_view", 1, created_at=datetime(2024, 1, 1, 10, tzinfo=timezone.utc))
        await _seed(store, "product_view", 1, created_at=datetime(2024, 1, 1, 14, tzinfo=timezone.utc))
        await _seed(store, "product_view", 1, created_at=datetime(2024, 1, 2, 9, tzinfo=timezone.utc))
        await _seed(store, "checkout_initiated", 1, created_at=datetime(2024, 1, 3, 9, tzinfo=timezone.utc))

        series = await engine.get_timeline_data(TimelineInterval.DAY, DateRange(date(2024, 1, 1), date(2024, 1, 3)))

    assert series.labels == ["2024-01-01", "2024-01-02"]
    assert series.views == [2, 1]
    assert series.add_to_cart == [0, 0]
    assert series.orders == [0, 0]
    assert series.revenue == [Decimal("0.00"), Decimal("0.00")]


@pytest.mark.asyncio
async def test_timeline_sums_revenue_per_month(session_factory) -> None:
    async with session_factory() as session:
        store = EventStore(session)
        engine = AggregationEngine(store, NullProductLookup())
        await _seed(store, "order_completed", 2, revenue="10.25", created_at=datetime(2024, 1, 5, tzinfo=timezone.utc))
        await _seed(store, "order_completed", 1, revenue="4.50", created_at=datetime(2024, 2, 5, tzinfo=timezone.utc))

        series = await engine.get_timeline_data(
            TimelineInterval.MONTH, DateRange(date(2024, 1, 1), date(2024, 2, 29))
        )

    assert series.labels == ["2024-01", "2024-02"]
    assert series.orders == [2, 1]
    assert series.revenue == [Decimal("20.50"), Decimal("4.50")]


@pytest.mark.asyncio
async def test_top_products_rank_by_requested_metric(session_factory) -> None:
    moment = datetime(2024, 1, 15, tzinfo=timezone.utc)
    lookup = StaticProductLookup(
        {
            1: ProductInfo(name="Linen Shirt", url="https://shop.test/linen-shirt"),
            2: ProductInfo(name="Canvas Tote", url="https://shop.test/canvas-tote"),
        }
    )
    async with session_factory() as session:
        store = EventStore(session)
        engine = AggregationEngine(store, lookup)
        await _seed(store, "product_view", 10, product_id=1, created_at=moment)
        await _seed(store, "order_completed", 1, product_id=1, revenue="40", created_at=moment)
        await _seed(store, "product_view", 4, product_id=2, created_at=moment)
        await _seed(store, "order_completed", 2, product_id=2, revenue="15", created_at=moment)
        await _seed(store, "product_view", 50, created_at=moment)

        by_views = await engine.get_top_products(10, JANUARY, ProductSortField.VIEWS)
        by_orders = await engine.get_top_products(10, JANUARY, ProductSortField.ORDERS)

    assert [product.product_id for product in by_views] == [1, 2]
    assert [product.product_id for product in by_orders] == [2, 1]

    shirt = by_views[0]
    assert shirt.product_name == "Linen Shirt"
    assert shirt.product_url == "https://shop.test/linen-shirt"
    assert shirt.views == 10
    assert shirt.orders == 1
    assert shirt.revenue == Decimal("40.00")
    assert shirt.conversion_rate == 10.0

    tote = by_orders[0]
    assert tote.revenue == Decimal("30.00")
    assert tote.conversion_rate == 50.0


@pytest.mark.asyncio
async def test_top_products_fall_back_to_placeholders(session_factory) -> None:
    moment = datetime(2024, 1, 15, tzinfo=timezone.utc)
    async with session_factory() as session:
        store = EventStore(session)
        await _seed(store, "product_view", 1, product_id=77, created_at=moment)

        failing = await AggregationEngine(store, ExplodingLookup()).get_top_products(5, JANUARY)
        missing = await AggregationEngine(store, NullProductLookup()).get_top_products(5, JANUARY)

    for products in (failing, missing):
        assert len(products) == 1
        assert products[0].product_name == "Product #77"
        assert products[0].product_url == "#"


@pytest.mark.asyncio
async def test_funnel_counts(session_factory) -> None:
    moment = datetime(2024, 1, 20, tzinfo=timezone.utc)
    async with session_factory() as session:
        store = EventStore(session)
        engine = AggregationEngine(store, NullProductLookup())
        await _seed(store, "product_view", 6, created_at=moment)
        await _seed(store, "add_to_cart", 3, created_at=moment)
        await _seed(store, "checkout_initiated", 2, created_at=moment)
        await _seed(store, "order_completed", 1, created_at=moment)

        funnel = await engine.get_funnel_data(JANUARY)

    assert funnel.as_dict() == {"views": 6, "add_to_cart": 3, "orders": 1}
