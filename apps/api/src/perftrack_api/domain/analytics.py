"""Value types shared by the event store, aggregation engine and metrics facade."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Mapping

CENTS = Decimal("0.01")
DEFAULT_WINDOW_DAYS = 30


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_money(value: Any) -> Decimal:
    """Coerce a numeric (or numeric string) to a cent-quantized Decimal."""

    if value is None or value == "":
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def format_money(value: Decimal) -> str:
    return f"{to_money(value):.2f}"


class EventType(str, Enum):
    PRODUCT_VIEW = "product_view"
    ADD_TO_CART = "add_to_cart"
    CHECKOUT_INITIATED = "checkout_initiated"
    ORDER_COMPLETED = "order_completed"


class ProductSortField(str, Enum):
    VIEWS = "views"
    ADD_TO_CART = "add_to_cart"
    ORDERS = "orders"
    REVENUE = "revenue"


class TimelineInterval(str, Enum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class EventSortField(str, Enum):
    ID = "id"
    CREATED_AT = "created_at"
    EVENT_TYPE = "event_type"
    PRODUCT_ID = "product_id"
    USER_ID = "user_id"
    REVENUE = "revenue"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True, slots=True)
class DateRange:
    """Calendar-day range, closed on both ends."""

    date_from: date | None = None
    date_to: date | None = None

    @classmethod
    def trailing(cls, days: int = DEFAULT_WINDOW_DAYS, *, today: date | None = None) -> "DateRange":
        end = today or utcnow().date()
        return cls(date_from=end - timedelta(days=days), date_to=end)

    @property
    def is_bounded(self) -> bool:
        return self.date_from is not None and self.date_to is not None

    def with_defaults(self, *, today: date | None = None) -> "DateRange":
        """Fill missing bounds from the trailing 30-day window."""

        if self.is_bounded:
            return self
        fallback = DateRange.trailing(today=today)
        return DateRange(
            date_from=self.date_from or fallback.date_from,
            date_to=self.date_to or fallback.date_to,
        )

    def bounds(self) -> tuple[datetime, datetime] | None:
        """Return the closed UTC interval ``[from 00:00:00, to 23:59:59.999999]``."""

        if not self.is_bounded:
            return None
        start = datetime.combine(self.date_from, time.min, tzinfo=timezone.utc)
        end = datetime.combine(self.date_to, time.max, tzinfo=timezone.utc)
        return start, end

    def as_params(self) -> dict[str, str | None]:
        return {
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
        }


@dataclass(slots=True)
class EventFilters:
    """Conjunction of optional predicates for raw event retrieval."""

    event_type: str | None = None
    product_id: int | None = None
    user_id: int | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    limit: int = 1000
    offset: int = 0
    order_by: EventSortField = EventSortField.CREATED_AT
    direction: SortDirection = SortDirection.DESC


@dataclass(slots=True)
class EventTotals:
    """Aggregate row returned by the event store."""

    views: int = 0
    add_to_cart: int = 0
    orders: int = 0
    revenue: Decimal = Decimal("0.00")
    unique_sessions: int = 0


@dataclass(slots=True)
class ProductRollup:
    product_id: int
    views: int
    add_to_cart: int
    orders: int
    revenue: Decimal


@dataclass(slots=True)
class StatsBundle:
    views: int
    add_to_cart: int
    orders: int
    conversion_rate: float
    revenue: Decimal
    abandonment_rate: float
    unique_sessions: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "views": self.views,
            "add_to_cart": self.add_to_cart,
            "orders": self.orders,
            "conversion_rate": self.conversion_rate,
            "revenue": format_money(self.revenue),
            "abandonment_rate": self.abandonment_rate,
            "unique_sessions": self.unique_sessions,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "StatsBundle":
        return cls(
            views=int(payload["views"]),
            add_to_cart=int(payload["add_to_cart"]),
            orders=int(payload["orders"]),
            conversion_rate=float(payload["conversion_rate"]),
            revenue=to_money(payload["revenue"]),
            abandonment_rate=float(payload["abandonment_rate"]),
            unique_sessions=int(payload["unique_sessions"]),
        )


@dataclass(slots=True)
class ProductPerformance:
    product_id: int
    product_name: str
    product_url: str
    views: int
    add_to_cart: int
    orders: int
    revenue: Decimal
    conversion_rate: float

    def as_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "product_url": self.product_url,
            "views": self.views,
            "add_to_cart": self.add_to_cart,
            "orders": self.orders,
            "revenue": format_money(self.revenue),
            "conversion_rate": self.conversion_rate,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ProductPerformance":
        return cls(
            product_id=int(payload["product_id"]),
            product_name=str(payload["product_name"]),
            product_url=str(payload["product_url"]),
            views=int(payload["views"]),
            add_to_cart=int(payload["add_to_cart"]),
            orders=int(payload["orders"]),
            revenue=to_money(payload["revenue"]),
            conversion_rate=float(payload["conversion_rate"]),
        )


@dataclass(slots=True)
class TimelineSeries:
    """Parallel per-bucket arrays, ascending by label."""

    labels: list[str] = field(default_factory=list)
    views: list[int] = field(default_factory=list)
    add_to_cart: list[int] = field(default_factory=list)
    orders: list[int] = field(default_factory=list)
    revenue: list[Decimal] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "labels": list(self.labels),
            "views": list(self.views),
            "add_to_cart": list(self.add_to_cart),
            "orders": list(self.orders),
            "revenue": [format_money(value) for value in self.revenue],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "TimelineSeries":
        return cls(
            labels=[str(label) for label in payload.get("labels", [])],
            views=[int(value) for value in payload.get("views", [])],
            add_to_cart=[int(value) for value in payload.get("add_to_cart", [])],
            orders=[int(value) for value in payload.get("orders", [])],
            revenue=[to_money(value) for value in payload.get("revenue", [])],
        )


@dataclass(slots=True)
class FunnelCounts:
    views: int
    add_to_cart: int
    orders: int

    def as_dict(self) -> dict[str, int]:
        return {"views": self.views, "add_to_cart": self.add_to_cart, "orders": self.orders}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "FunnelCounts":
        return cls(
            views=int(payload["views"]),
            add_to_cart=int(payload["add_to_cart"]),
            orders=int(payload["orders"]),
        )


__all__ = [
    "DEFAULT_WINDOW_DAYS",
    "DateRange",
    "EventFilters",
    "EventSortField",
    "EventTotals",
    "EventType",
    "FunnelCounts",
    "ProductPerformance",
    "ProductRollup",
    "ProductSortField",
    "SortDirection",
    "StatsBundle",
    "TimelineInterval",
    "TimelineSeries",
    "format_money",
    "to_money",
    "utcnow",
]
