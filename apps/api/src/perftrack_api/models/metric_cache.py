"""Persistent storage for memoized metric payloads."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, Index, String, Text

from perftrack_api.db.base import Base


class MetricCacheEntry(Base):
    """Database-backed cache entry for computed metric bundles."""

    __tablename__ = "metric_cache_entries"
    __table_args__ = (
        Index("ix_metric_cache_entries_namespace", "namespace"),
    )

    cache_key = Column(String(length=255), primary_key=True)
    namespace = Column(String(length=64), nullable=False)
    payload = Column(Text, nullable=False)
    computed_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
