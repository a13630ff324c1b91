"""Derived storefront metrics computed from the event log."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict

from loguru import logger

from perftrack_api.domain.analytics import (
    DateRange,
    EventType,
    FunnelCounts,
    ProductPerformance,
    ProductSortField,
    TimelineInterval,
    TimelineSeries,
    to_money,
)
from perftrack_api.services.catalog.product_lookup import ProductInfo, ProductLookup
from perftrack_api.services.events.store import EventStore

PLACEHOLDER_PRODUCT_URL = "#"
_RATE_QUANTUM = Decimal("0.01")


def _percentage(numerator: int, denominator: int) -> float:
    if denominator == 0:
        return 0.0
    ratio = Decimal(numerator) / Decimal(denominator) * 100
    return float(ratio.quantize(_RATE_QUANTUM, rounding=ROUND_HALF_UP))


def bucket_label(moment: datetime, interval: TimelineInterval) -> str:
    """Canonical start label of the bucket containing ``moment`` (UTC)."""

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    else:
        moment = moment.astimezone(timezone.utc)

    if interval == TimelineInterval.HOUR:
        return moment.strftime("%Y-%m-%d %H:00")
    if interval == TimelineInterval.WEEK:
        week_start = moment.date() - timedelta(days=moment.weekday())
        return week_start.isoformat()
    if interval == TimelineInterval.MONTH:
        return moment.strftime("%Y-%m")
    return moment.strftime("%Y-%m-%d")


class _Bucket:
    __slots__ = ("views", "add_to_cart", "orders", "revenue")

    def __init__(self) -> None:
        self.views = 0
        self.add_to_cart = 0
        self.orders = 0
        self.revenue = Decimal("0.00")


class AggregationEngine:
    """Computes conversion, abandonment, rankings and timelines over an event store."""

    def __init__(self, store: EventStore, product_lookup: ProductLookup) -> None:
        self._store = store
        self._product_lookup = product_lookup

    @staticmethod
    def calculate_conversion_rate(views: int, orders: int) -> float:
        """``orders / views * 100`` rounded half-up to two places; ``0.0`` without views."""

        return _percentage(int(orders), int(views))

    @staticmethod
    def calculate_abandonment_rate(add_to_cart: int, orders: int) -> float:
        return _percentage(int(add_to_cart) - int(orders), int(add_to_cart))

    async def get_top_products(
        self,
        limit: int = 10,
        date_range: DateRange | None = None,
        order_by: ProductSortField = ProductSortField.VIEWS,
    ) -> list[ProductPerformance]:
        rollups = await self._store.get_product_rollups(limit=limit, date_range=date_range, order_by=order_by)

        products: list[ProductPerformance] = []
        for rollup in rollups:
            info = await self._describe_product(rollup.product_id)
            products.append(
                ProductPerformance(
                    product_id=rollup.product_id,
                    product_name=info.name,
                    product_url=info.url,
                    views=rollup.views,
                    add_to_cart=rollup.add_to_cart,
                    orders=rollup.orders,
                    revenue=rollup.revenue,
                    conversion_rate=self.calculate_conversion_rate(rollup.views, rollup.orders),
                )
            )

        logger.debug(
            "Ranked top products",
            order_by=order_by.value,
            limit=limit,
            returned=len(products),
        )
        return products

    async def get_abandonment_rate(self, date_range: DateRange | None = None) -> float:
        """Store-wide ``(carts - orders) / carts * 100``; not a per-session funnel trace."""

        totals = await self._store.get_stats(date_range)
        return self.calculate_abandonment_rate(totals.add_to_cart, totals.orders)

    async def get_timeline_data(
        self,
        interval: TimelineInterval = TimelineInterval.DAY,
        date_range: DateRange | None = None,
    ) -> TimelineSeries:
        window = (date_range or DateRange()).with_defaults()
        start, end = window.bounds()

        buckets: Dict[str, _Bucket] = defaultdict(_Bucket)
        for created_at, event_type, revenue in await self._store.get_timeline_rows(start, end):
            bucket = buckets[bucket_label(created_at, interval)]
            if event_type == EventType.PRODUCT_VIEW.value:
                bucket.views += 1
            elif event_type == EventType.ADD_TO_CART.value:
                bucket.add_to_cart += 1
            elif event_type == EventType.ORDER_COMPLETED.value:
                bucket.orders += 1
            if revenue is not None:
                bucket.revenue += to_money(revenue)

        series = TimelineSeries()
        for label in sorted(buckets):
            bucket = buckets[label]
            series.labels.append(label)
            series.views.append(bucket.views)
            series.add_to_cart.append(bucket.add_to_cart)
            series.orders.append(bucket.orders)
            series.revenue.append(to_money(bucket.revenue))
        return series

    async def get_funnel_data(self, date_range: DateRange | None = None) -> FunnelCounts:
        totals = await self._store.get_stats(date_range)
        return FunnelCounts(views=totals.views, add_to_cart=totals.add_to_cart, orders=totals.orders)

    async def _describe_product(self, product_id: int) -> ProductInfo:
        placeholder = ProductInfo(name=f"Product #{product_id}", url=PLACEHOLDER_PRODUCT_URL)
        try:
            info = await self._product_lookup.resolve(product_id)
        except Exception as exc:  # noqa: BLE001 - collaborator errors become placeholders
            logger.warning("Product lookup failed", product_id=product_id, error=str(exc))
            return placeholder
        return info or placeholder


__all__ = ["AggregationEngine", "PLACEHOLDER_PRODUCT_URL", "bucket_label"]
