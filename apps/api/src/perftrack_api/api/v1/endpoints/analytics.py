"""Storefront performance analytics endpoints."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, List

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pydantic import BaseModel, Field, field_validator

from perftrack_api.api.dependencies.security import caller_is_trusted, require_api_key
from perftrack_api.api.dependencies.services import get_event_store, get_event_tracker, get_metrics_facade
from perftrack_api.domain.analytics import (
    DateRange,
    EventFilters,
    EventSortField,
    ProductSortField,
    SortDirection,
    TimelineInterval,
)
from perftrack_api.domain.events import RequestContext
from perftrack_api.services.events import EventStore
from perftrack_api.services.metrics import MetricsFacade
from perftrack_api.services.tracking import (
    SESSION_COOKIE_MAX_AGE,
    SESSION_COOKIE_NAME,
    EventTracker,
    VisitorContext,
    new_guest_session_id,
)

router = APIRouter(prefix="/analytics", tags=["Analytics"])

_read_access = [Depends(require_api_key)]


class StatsData(BaseModel):
    views: int
    add_to_cart: int
    orders: int
    conversion_rate: float
    revenue: str
    abandonment_rate: float
    unique_sessions: int


class StatsResponse(BaseModel):
    success: bool = True
    data: StatsData


class ProductData(BaseModel):
    product_id: int
    product_name: str
    product_url: str
    views: int
    add_to_cart: int
    orders: int
    revenue: str
    conversion_rate: float


class ProductsResponse(BaseModel):
    success: bool = True
    data: List[ProductData]


class TimelineData(BaseModel):
    labels: List[str]
    views: List[int]
    add_to_cart: List[int]
    orders: List[int]
    revenue: List[str]


class TimelineResponse(BaseModel):
    success: bool = True
    data: TimelineData


class FunnelData(BaseModel):
    views: int
    add_to_cart: int
    orders: int


class FunnelResponse(BaseModel):
    success: bool = True
    data: FunnelData


class EventRecord(BaseModel):
    id: int
    event_type: str
    product_id: int | None = None
    order_id: int | None = None
    user_id: int | None = None
    session_id: str | None = None
    revenue: str | None = None
    metadata: Any = None
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: str | None = None


class Pagination(BaseModel):
    limit: int
    offset: int
    count: int


class EventsResponse(BaseModel):
    success: bool = True
    data: List[EventRecord]
    pagination: Pagination


class TrackEventPayload(BaseModel):
    """Storefront event submitted by the shop frontend."""

    event_type: str = Field(..., min_length=1, max_length=50)
    product_id: int | None = Field(default=None, ge=1)
    order_id: int | None = Field(default=None, ge=1)
    revenue: Decimal | None = Field(default=None, ge=Decimal("0"))
    metadata: dict[str, Any] | None = None
    user_id: int | None = Field(default=None, ge=1)
    roles: List[str] = Field(default_factory=list)
    is_admin: bool = False

    @field_validator("event_type")
    @classmethod
    def normalize_event_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if not normalized:
            raise ValueError("event_type must not be blank")
        return normalized


class TrackEventResponse(BaseModel):
    status: str = Field(default="accepted")
    id: int | None = None


class CacheStatsData(BaseModel):
    namespace: str
    cached_items: int | None = None
    cache_available: bool
    default_ttl_seconds: int


class CacheStatsResponse(BaseModel):
    success: bool = True
    data: CacheStatsData


class CacheFlushResponse(BaseModel):
    success: bool
    removed: int | None = None


def _date_range(date_from: date | None, date_to: date | None) -> DateRange:
    return DateRange(date_from=date_from, date_to=date_to)


def _request_context(request: Request, user_id: int | None) -> RequestContext:
    return RequestContext(
        headers=dict(request.headers),
        remote_addr=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        user_id=user_id,
    )


@router.get(
    "/stats",
    response_model=StatsResponse,
    dependencies=_read_access,
    summary="Headline funnel statistics",
)
async def read_stats(
    date_from: date | None = Query(None, description="First day (inclusive), YYYY-MM-DD"),
    date_to: date | None = Query(None, description="Last day (inclusive), YYYY-MM-DD"),
    facade: MetricsFacade = Depends(get_metrics_facade),
) -> StatsResponse:
    stats = await facade.get_stats(_date_range(date_from, date_to))
    return StatsResponse(data=StatsData(**stats.as_dict()))


@router.get(
    "/products",
    response_model=ProductsResponse,
    dependencies=_read_access,
    summary="Top products ranked by a funnel metric",
)
async def read_top_products(
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    limit: int = Query(10, ge=1, le=100),
    orderby: ProductSortField = Query(ProductSortField.VIEWS),
    facade: MetricsFacade = Depends(get_metrics_facade),
) -> ProductsResponse:
    products = await facade.get_top_products(limit, _date_range(date_from, date_to), orderby)
    return ProductsResponse(data=[ProductData(**product.as_dict()) for product in products])


@router.get(
    "/timeline",
    response_model=TimelineResponse,
    dependencies=_read_access,
    summary="Funnel counts bucketed by hour, day, week or month",
)
async def read_timeline(
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    interval: TimelineInterval = Query(TimelineInterval.DAY),
    facade: MetricsFacade = Depends(get_metrics_facade),
) -> TimelineResponse:
    series = await facade.get_timeline(interval, _date_range(date_from, date_to))
    return TimelineResponse(data=TimelineData(**series.as_dict()))


@router.get(
    "/funnel",
    response_model=FunnelResponse,
    dependencies=_read_access,
    summary="View, cart and order totals",
)
async def read_funnel(
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    facade: MetricsFacade = Depends(get_metrics_facade),
) -> FunnelResponse:
    funnel = await facade.get_funnel(_date_range(date_from, date_to))
    return FunnelResponse(data=FunnelData(**funnel.as_dict()))


@router.get(
    "/events",
    response_model=EventsResponse,
    dependencies=_read_access,
    summary="Raw performance events",
)
async def list_events(
    event_type: str | None = Query(None, max_length=50),
    product_id: int | None = Query(None, ge=1),
    user_id: int | None = Query(None, ge=1),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    orderby: EventSortField = Query(EventSortField.CREATED_AT),
    order: SortDirection = Query(SortDirection.DESC),
    store: EventStore = Depends(get_event_store),
) -> EventsResponse:
    filters = EventFilters(
        event_type=event_type,
        product_id=product_id,
        user_id=user_id,
        date_from=datetime.combine(date_from, time.min, tzinfo=timezone.utc) if date_from else None,
        date_to=datetime.combine(date_to, time.max, tzinfo=timezone.utc) if date_to else None,
        limit=limit,
        offset=offset,
        order_by=orderby,
        direction=order,
    )
    events = await store.get_events(filters)
    return EventsResponse(
        data=[EventRecord(**event.as_dict()) for event in events],
        pagination=Pagination(limit=limit, offset=offset, count=len(events)),
    )


@router.post(
    "/events",
    response_model=TrackEventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Record a storefront event",
)
async def record_event(
    payload: TrackEventPayload,
    request: Request,
    response: Response,
    tracker: EventTracker = Depends(get_event_tracker),
    trusted: bool = Depends(caller_is_trusted),
) -> TrackEventResponse:
    """Accept the event regardless of whether it was stored.

    ``user_id``, ``roles`` and ``is_admin`` are honoured only from callers holding
    the API key; browser submissions are recorded as guests. Guests without a
    session cookie are issued one so later events from the same browser share
    a session.
    """

    user_id = payload.user_id if trusted else None
    visitor = VisitorContext(
        user_id=user_id,
        roles=payload.roles if trusted else [],
        is_admin=payload.is_admin and trusted,
        session_cookie=request.cookies.get(SESSION_COOKIE_NAME),
    )
    if not visitor.is_logged_in and not visitor.session_cookie and tracker.should_track(visitor):
        visitor.session_cookie = new_guest_session_id()
        response.set_cookie(
            SESSION_COOKIE_NAME,
            visitor.session_cookie,
            max_age=SESSION_COOKIE_MAX_AGE,
            httponly=True,
            samesite="lax",
        )

    event_id = await tracker.track_event(
        payload.event_type,
        visitor,
        _request_context(request, user_id),
        product_id=payload.product_id,
        order_id=payload.order_id,
        revenue=payload.revenue,
        metadata=payload.metadata,
    )
    return TrackEventResponse(id=event_id)


@router.get(
    "/cache",
    response_model=CacheStatsResponse,
    dependencies=_read_access,
    summary="Metrics cache status",
)
async def read_cache_stats(facade: MetricsFacade = Depends(get_metrics_facade)) -> CacheStatsResponse:
    return CacheStatsResponse(data=CacheStatsData(**await facade.cache_stats()))


@router.post(
    "/cache/flush",
    response_model=CacheFlushResponse,
    dependencies=_read_access,
    summary="Drop every cached metric bundle",
)
async def flush_cache(facade: MetricsFacade = Depends(get_metrics_facade)) -> CacheFlushResponse:
    removed = await facade.flush_cache()
    return CacheFlushResponse(success=removed is not None, removed=removed)
