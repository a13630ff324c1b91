"""Ingestion payloads and request provenance."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Mapping


@dataclass(slots=True)
class EventPayload:
    """Proposed event record prior to normalization by the event store."""

    event_type: str
    product_id: Any = None
    order_id: Any = None
    user_id: Any = None
    session_id: str | None = None
    revenue: Any = None
    metadata: Any = None
    created_at: datetime | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EventPayload":
        known = {item.name for item in fields(cls)}
        values = {key: value for key, value in data.items() if key in known}
        values.setdefault("event_type", "")
        return cls(**values)


@dataclass(slots=True)
class RequestContext:
    """Provenance of the inbound request that produced an event."""

    headers: Mapping[str, str] = field(default_factory=dict)
    remote_addr: str | None = None
    user_agent: str | None = None
    user_id: int | None = None

    def header(self, name: str) -> str | None:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None


__all__ = ["EventPayload", "RequestContext"]
