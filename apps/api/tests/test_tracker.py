from decimal import Decimal

import pytest

from perftrack_api.core.settings import Settings
from perftrack_api.domain.analytics import EventFilters
from perftrack_api.domain.events import RequestContext
from perftrack_api.services.analytics.aggregation import AggregationEngine
from perftrack_api.services.cache import MemoryCacheBackend, MetricsCache
from perftrack_api.services.catalog import NullProductLookup
from perftrack_api.services.events import EventStore
from perftrack_api.services.metrics import MetricsFacade
from perftrack_api.services.tracking import EventTracker, VisitorContext


def _config(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def _tracker(session, config: Settings) -> tuple[EventTracker, EventStore]:
    store = EventStore(session)
    facade = MetricsFacade(
        store,
        AggregationEngine(store, NullProductLookup()),
        MetricsCache(MemoryCacheBackend(), namespace="test"),
    )
    return EventTracker(facade, config), store


def test_should_track_policy() -> None:
    tracker = EventTracker(facade=None, config=_config(excluded_user_roles="Shop_Manager, editor"))

    assert tracker.should_track(VisitorContext()) is True
    assert tracker.should_track(VisitorContext(user_id=4, roles=["customer"])) is True
    assert tracker.should_track(VisitorContext(user_id=1, is_admin=True)) is False
    assert tracker.should_track(VisitorContext(user_id=2, roles=["shop_manager"])) is False

    admin_tracker = EventTracker(facade=None, config=_config(track_admin_users=True))
    assert admin_tracker.should_track(VisitorContext(user_id=1, is_admin=True)) is True

    members_only = EventTracker(facade=None, config=_config(track_anonymous=False))
    assert members_only.should_track(VisitorContext()) is False
    assert members_only.should_track(VisitorContext(user_id=9)) is True

    disabled = EventTracker(facade=None, config=_config(tracking_enabled=False))
    assert disabled.should_track(VisitorContext(user_id=9)) is False


def test_resolve_session_id() -> None:
    assert EventTracker.resolve_session_id(VisitorContext(user_id=12, session_cookie="guest_x")) == "user_12"
    assert EventTracker.resolve_session_id(VisitorContext(session_cookie="guest_abc")) == "guest_abc"

    generated = EventTracker.resolve_session_id(VisitorContext())
    assert generated.startswith("guest_")
    assert len(generated) == len("guest_") + 32
    assert generated[len("guest_"):].isalnum()
    assert generated != EventTracker.resolve_session_id(VisitorContext())


@pytest.mark.asyncio
async def test_tracking_hooks_record_events(session_factory) -> None:
    async with session_factory() as session:
        tracker, store = _tracker(session, _config())
        guest = VisitorContext(session_cookie="guest_cookie")
        member = VisitorContext(user_id=31)
        context = RequestContext(remote_addr="198.51.100.8", user_agent="pytest")

        assert await tracker.track_product_view(guest, 5, context) is not None
        assert await tracker.track_add_to_cart(guest, 5, quantity=2, variation_id=51, variation={"size": "M"}) is not None
        assert await tracker.track_checkout_initiated(member) is not None
        assert (
            await tracker.track_order_completed(
                member,
                1001,
                revenue=Decimal("42.00"),
                currency="EUR",
                payment_method="card",
            )
            is not None
        )

        events = {event.event_type: event for event in await store.get_events(EventFilters())}

    view = events["product_view"]
    assert view.session_id == "guest_cookie"
    assert view.user_id is None
    assert view.ip_address == "198.51.100.8"

    cart = events["add_to_cart"]
    assert cart.metadata_payload == {"quantity": 2, "variation_id": 51, "variation": {"size": "M"}}

    checkout = events["checkout_initiated"]
    assert checkout.session_id == "user_31"
    assert checkout.user_id == 31

    order = events["order_completed"]
    assert order.order_id == 1001
    assert order.revenue == Decimal("42.00")
    assert order.metadata_payload["currency"] == "EUR"
    assert order.metadata_payload["payment_method"] == "card"


@pytest.mark.asyncio
async def test_suppressed_visitors_are_not_recorded(session_factory) -> None:
    async with session_factory() as session:
        tracker, store = _tracker(session, _config(track_anonymous=False))

        assert await tracker.track_product_view(VisitorContext(), 5) is None
        assert await tracker.track_event("wishlist_add", VisitorContext(user_id=3), product_id=5) is not None

        events = await store.get_events(EventFilters())

    assert [event.event_type for event in events] == ["wishlist_add"]
