"""Event log persistence."""

from .store import EventStore, ensure_schema, resolve_client_ip

__all__ = ["EventStore", "ensure_schema", "resolve_client_ip"]
