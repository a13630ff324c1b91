"""Storefront tracking hooks feeding the metrics facade."""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from loguru import logger

from perftrack_api.core.settings import Settings
from perftrack_api.domain.analytics import EventType
from perftrack_api.domain.events import EventPayload, RequestContext
from perftrack_api.services.metrics.facade import MetricsFacade

SESSION_COOKIE_NAME = "perftrack_session_id"
SESSION_COOKIE_MAX_AGE = 30 * 24 * 60 * 60
_GUEST_ALPHABET = string.ascii_letters + string.digits


@dataclass(slots=True)
class VisitorContext:
    """Who is browsing: supplied by the storefront before it calls the tracker."""

    user_id: int | None = None
    roles: list[str] = field(default_factory=list)
    is_admin: bool = False
    session_cookie: str | None = None

    @property
    def is_logged_in(self) -> bool:
        return self.user_id is not None


def new_guest_session_id() -> str:
    return "guest_" + "".join(secrets.choice(_GUEST_ALPHABET) for _ in range(32))


class EventTracker:
    """Applies tracking policy, derives sessions and records funnel events."""

    def __init__(self, facade: MetricsFacade, config: Settings) -> None:
        self._facade = facade
        self._config = config

    def should_track(self, visitor: VisitorContext) -> bool:
        if not self._config.tracking_enabled:
            return False
        if visitor.is_admin and not self._config.track_admin_users:
            return False
        excluded = set(self._config.excluded_user_roles)
        if visitor.is_logged_in and excluded.intersection(role.lower() for role in visitor.roles):
            return False
        if not visitor.is_logged_in and not self._config.track_anonymous:
            return False
        return True

    @staticmethod
    def resolve_session_id(visitor: VisitorContext) -> str:
        if visitor.is_logged_in:
            return f"user_{visitor.user_id}"
        if visitor.session_cookie:
            return visitor.session_cookie.strip()
        return new_guest_session_id()

    async def track_product_view(
        self,
        visitor: VisitorContext,
        product_id: int,
        context: RequestContext | None = None,
    ) -> int | None:
        return await self.track_event(EventType.PRODUCT_VIEW.value, visitor, context, product_id=product_id)

    async def track_add_to_cart(
        self,
        visitor: VisitorContext,
        product_id: int,
        *,
        quantity: int = 1,
        variation_id: int | None = None,
        variation: dict[str, Any] | None = None,
        context: RequestContext | None = None,
    ) -> int | None:
        return await self.track_event(
            EventType.ADD_TO_CART.value,
            visitor,
            context,
            product_id=product_id,
            metadata={"quantity": quantity, "variation_id": variation_id, "variation": variation or {}},
        )

    async def track_checkout_initiated(
        self,
        visitor: VisitorContext,
        context: RequestContext | None = None,
    ) -> int | None:
        return await self.track_event(EventType.CHECKOUT_INITIATED.value, visitor, context)

    async def track_order_completed(
        self,
        visitor: VisitorContext,
        order_id: int,
        *,
        revenue: Decimal,
        customer_id: int | None = None,
        currency: str | None = None,
        payment_method: str | None = None,
        context: RequestContext | None = None,
    ) -> int | None:
        return await self.track_event(
            EventType.ORDER_COMPLETED.value,
            visitor,
            context,
            order_id=order_id,
            user_id=customer_id,
            revenue=revenue,
            metadata={"order_total": revenue, "currency": currency, "payment_method": payment_method},
        )

    async def track_event(
        self,
        event_type: str,
        visitor: VisitorContext,
        context: RequestContext | None = None,
        **fields: Any,
    ) -> int | None:
        if not self.should_track(visitor):
            logger.debug("Tracking suppressed by policy", event_type=event_type)
            return None

        fields.setdefault("session_id", self.resolve_session_id(visitor))
        if fields.get("user_id") is None:
            fields["user_id"] = visitor.user_id
        payload = EventPayload.from_mapping({**fields, "event_type": event_type})
        return await self._facade.insert_event(payload, context)


__all__ = [
    "EventTracker",
    "SESSION_COOKIE_MAX_AGE",
    "SESSION_COOKIE_NAME",
    "VisitorContext",
    "new_guest_session_id",
]
