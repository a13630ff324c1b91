"""Storefront tracking collaborators."""

from .tracker import (
    SESSION_COOKIE_MAX_AGE,
    SESSION_COOKIE_NAME,
    EventTracker,
    VisitorContext,
    new_guest_session_id,
)

__all__ = [
    "EventTracker",
    "SESSION_COOKIE_MAX_AGE",
    "SESSION_COOKIE_NAME",
    "VisitorContext",
    "new_guest_session_id",
]
