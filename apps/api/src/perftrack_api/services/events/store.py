"""Append-only persistence for storefront performance events."""

from __future__ import annotations

import ipaddress
import json
import re
from datetime import datetime, timedelta, timezone
from decimal import InvalidOperation
from typing import Any, Mapping, Sequence

from loguru import logger
from sqlalchemy import Select, case, delete, distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from perftrack_api.db.base import Base
from perftrack_api.domain.analytics import (
    DateRange,
    EventFilters,
    EventSortField,
    EventTotals,
    EventType,
    ProductRollup,
    ProductSortField,
    SortDirection,
    to_money,
    utcnow,
)
from perftrack_api.domain.events import EventPayload, RequestContext
from perftrack_api.models.event import PerformanceEvent
from perftrack_api.models.metric_cache import MetricCacheEntry

# Checked in order; the direct connection address is the final fallback.
CLIENT_IP_HEADERS: tuple[str, ...] = (
    "CF-Connecting-IP",
    "Client-IP",
    "X-Forwarded-For",
    "X-Forwarded",
    "X-Cluster-Client-IP",
    "Forwarded-For",
    "Forwarded",
)

FUNNEL_EVENT_TYPES = (
    EventType.PRODUCT_VIEW.value,
    EventType.ADD_TO_CART.value,
    EventType.ORDER_COMPLETED.value,
)

_EVENT_KEY_PATTERN = re.compile(r"[^a-z0-9_\-]")
_MAX_TEXT_LENGTH = 255

_SORT_COLUMNS = {
    EventSortField.ID: PerformanceEvent.id,
    EventSortField.CREATED_AT: PerformanceEvent.created_at,
    EventSortField.EVENT_TYPE: PerformanceEvent.event_type,
    EventSortField.PRODUCT_ID: PerformanceEvent.product_id,
    EventSortField.USER_ID: PerformanceEvent.user_id,
    EventSortField.REVENUE: PerformanceEvent.revenue,
}


def _type_count(event_type: EventType):
    return func.count(case((PerformanceEvent.event_type == event_type.value, 1)))


def _create_tables(sync_connection) -> None:
    Base.metadata.create_all(
        sync_connection,
        tables=[PerformanceEvent.__table__, MetricCacheEntry.__table__],
        checkfirst=True,
    )


async def ensure_schema(engine) -> None:
    """Create the event and cache tables (and indexes) when missing."""

    async with engine.begin() as connection:
        await connection.run_sync(_create_tables)


def sanitize_event_type(value: Any) -> str:
    return _EVENT_KEY_PATTERN.sub("", str(value or "").strip().lower())


def resolve_client_ip(context: RequestContext | None, *, anonymize: bool = False) -> str | None:
    """Pick the first valid address from the proxy headers, then the peer address."""

    if context is None:
        return None

    candidates = [context.header(name) for name in CLIENT_IP_HEADERS]
    candidates.append(context.remote_addr)
    for raw in candidates:
        if not raw:
            continue
        try:
            address = ipaddress.ip_address(_header_address(raw))
        except ValueError:
            continue
        return _anonymize(address) if anonymize else str(address)
    return None


def _header_address(raw: str) -> str:
    """Reduce ``X-Forwarded-For`` or RFC 7239 ``Forwarded`` values to a bare address."""

    candidate = raw.split(",")[0].strip()
    if "=" in candidate:
        for pair in candidate.split(";"):
            name, _, value = pair.strip().partition("=")
            if name.lower() == "for":
                candidate = value
                break
    candidate = candidate.strip().strip('"')
    if candidate.startswith("["):
        return candidate[1:].partition("]")[0]
    if candidate.count(":") == 1:
        return candidate.partition(":")[0]
    return candidate


def _anonymize(address: ipaddress.IPv4Address | ipaddress.IPv6Address) -> str:
    prefix = 24 if address.version == 4 else 48
    network = ipaddress.ip_network(f"{address}/{prefix}", strict=False)
    return str(network.network_address)


def _coerce_id(value: Any) -> int | None:
    if not value:
        return None
    try:
        coerced = int(value)
    except (TypeError, ValueError):
        return None
    return coerced or None


def _clean_text(value: Any) -> str | None:
    if not value:
        return None
    cleaned = " ".join(str(value).split())
    return cleaned[:_MAX_TEXT_LENGTH] or None


def _normalize_timestamp(value: datetime | None) -> datetime:
    if value is None:
        return utcnow()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value.astimezone(timezone.utc)


class EventStore:
    """Owns the ``performance_events`` table: insert, query, aggregate, prune."""

    def __init__(self, session: AsyncSession, *, anonymize_ip: bool = False) -> None:
        self._session = session
        self._anonymize_ip = anonymize_ip

    @property
    def session(self) -> AsyncSession:
        return self._session

    async def ensure_schema(self) -> None:
        """Idempotently create the tables on the session's connection."""

        connection = await self._session.connection()
        await connection.run_sync(_create_tables)
        await self._session.commit()

    def build_record(self, payload: EventPayload, context: RequestContext | None = None) -> PerformanceEvent:
        """Normalize a proposed event into a persistable row."""

        event_type = sanitize_event_type(payload.event_type)
        if not event_type:
            raise ValueError("event_type is required")

        revenue = None
        if payload.revenue:
            revenue = to_money(payload.revenue)

        metadata = None
        if payload.metadata:
            metadata = json.dumps(payload.metadata, default=str, ensure_ascii=False)

        user_id = _coerce_id(payload.user_id)
        if user_id is None and context is not None:
            user_id = _coerce_id(context.user_id)

        return PerformanceEvent(
            event_type=event_type,
            product_id=_coerce_id(payload.product_id),
            order_id=_coerce_id(payload.order_id),
            user_id=user_id,
            session_id=_clean_text(payload.session_id),
            revenue=revenue,
            metadata_text=metadata,
            ip_address=resolve_client_ip(context, anonymize=self._anonymize_ip),
            user_agent=_clean_text(context.user_agent if context else None),
            created_at=_normalize_timestamp(payload.created_at),
        )

    async def insert_event(
        self,
        payload: EventPayload | Mapping[str, Any],
        context: RequestContext | None = None,
    ) -> int | None:
        """Persist one event and return its id, or ``None`` when it could not be stored."""

        if not isinstance(payload, EventPayload):
            payload = EventPayload.from_mapping(payload)

        try:
            record = self.build_record(payload, context)
        except (ValueError, TypeError, InvalidOperation) as exc:
            logger.warning("Rejected malformed performance event", event_type=payload.event_type, error=str(exc))
            return None

        try:
            self._session.add(record)
            await self._session.flush()
            event_id = record.id
            await self._session.commit()
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.error(
                "Performance event insert failed",
                event_type=record.event_type,
                error=str(exc),
            )
            return None

        return event_id

    async def get_events(self, filters: EventFilters | None = None) -> list[PerformanceEvent]:
        filters = filters or EventFilters()
        stmt: Select = select(PerformanceEvent)

        if filters.event_type:
            stmt = stmt.where(PerformanceEvent.event_type == sanitize_event_type(filters.event_type))
        if filters.product_id:
            stmt = stmt.where(PerformanceEvent.product_id == int(filters.product_id))
        if filters.user_id:
            stmt = stmt.where(PerformanceEvent.user_id == int(filters.user_id))
        if filters.date_from:
            stmt = stmt.where(PerformanceEvent.created_at >= _as_utc(filters.date_from))
        if filters.date_to:
            stmt = stmt.where(PerformanceEvent.created_at <= _as_utc(filters.date_to))

        column = _SORT_COLUMNS.get(filters.order_by, PerformanceEvent.created_at)
        if filters.direction == SortDirection.ASC:
            stmt = stmt.order_by(column.asc(), PerformanceEvent.id.asc())
        else:
            stmt = stmt.order_by(column.desc(), PerformanceEvent.id.desc())

        stmt = stmt.limit(max(filters.limit, 0)).offset(max(filters.offset, 0))
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_stats(self, date_range: DateRange | None = None) -> EventTotals:
        stmt = select(
            _type_count(EventType.PRODUCT_VIEW).label("views"),
            _type_count(EventType.ADD_TO_CART).label("add_to_cart"),
            _type_count(EventType.ORDER_COMPLETED).label("orders"),
            func.sum(PerformanceEvent.revenue).label("revenue"),
            func.count(distinct(PerformanceEvent.session_id)).label("unique_sessions"),
        )
        stmt = self._apply_range(stmt, date_range)

        row = (await self._session.execute(stmt)).one_or_none()
        if row is None:
            return EventTotals()

        return EventTotals(
            views=int(row.views or 0),
            add_to_cart=int(row.add_to_cart or 0),
            orders=int(row.orders or 0),
            revenue=to_money(row.revenue),
            unique_sessions=int(row.unique_sessions or 0),
        )

    async def get_product_rollups(
        self,
        *,
        limit: int,
        date_range: DateRange | None = None,
        order_by: ProductSortField = ProductSortField.VIEWS,
    ) -> list[ProductRollup]:
        """Per-product counts and revenue, best first by ``order_by``."""

        views = _type_count(EventType.PRODUCT_VIEW)
        carts = _type_count(EventType.ADD_TO_CART)
        orders = _type_count(EventType.ORDER_COMPLETED)
        revenue = func.coalesce(func.sum(PerformanceEvent.revenue), 0)
        ranking = {
            ProductSortField.VIEWS: views,
            ProductSortField.ADD_TO_CART: carts,
            ProductSortField.ORDERS: orders,
            ProductSortField.REVENUE: revenue,
        }[order_by]

        stmt = select(
            PerformanceEvent.product_id,
            views.label("views"),
            carts.label("add_to_cart"),
            orders.label("orders"),
            revenue.label("revenue"),
        ).where(PerformanceEvent.product_id.isnot(None))
        stmt = (
            self._apply_range(stmt, date_range)
            .group_by(PerformanceEvent.product_id)
            .order_by(ranking.desc(), PerformanceEvent.product_id.asc())
            .limit(max(limit, 0))
        )

        result = await self._session.execute(stmt)
        return [
            ProductRollup(
                product_id=int(row.product_id),
                views=int(row.views or 0),
                add_to_cart=int(row.add_to_cart or 0),
                orders=int(row.orders or 0),
                revenue=to_money(row.revenue),
            )
            for row in result
        ]

    async def get_timeline_rows(self, start: datetime, end: datetime) -> Sequence[Any]:
        """Funnel events inside the closed interval ``[start, end]``, oldest first."""

        stmt = (
            select(PerformanceEvent.created_at, PerformanceEvent.event_type, PerformanceEvent.revenue)
            .where(PerformanceEvent.created_at >= _as_utc(start))
            .where(PerformanceEvent.created_at <= _as_utc(end))
            .where(PerformanceEvent.event_type.in_(FUNNEL_EVENT_TYPES))
            .order_by(PerformanceEvent.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return result.all()

    async def count_events(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(PerformanceEvent))
        return int(result.scalar_one() or 0)

    async def cleanup_old_data(self, retention_days: int = 90) -> int:
        """Delete events older than ``retention_days``; the only delete path."""

        cutoff = utcnow() - timedelta(days=retention_days)
        result = await self._session.execute(
            delete(PerformanceEvent).where(PerformanceEvent.created_at < cutoff)
        )
        await self._session.commit()
        removed = int(result.rowcount or 0)
        logger.info("Pruned performance events", retention_days=retention_days, removed=removed)
        return removed

    @staticmethod
    def _apply_range(stmt: Select, date_range: DateRange | None) -> Select:
        bounds = date_range.bounds() if date_range else None
        if bounds is None:
            return stmt
        start, end = bounds
        return stmt.where(PerformanceEvent.created_at >= start).where(PerformanceEvent.created_at <= end)


__all__ = [
    "CLIENT_IP_HEADERS",
    "EventStore",
    "FUNNEL_EVENT_TYPES",
    "ensure_schema",
    "resolve_client_ip",
    "sanitize_event_type",
]
