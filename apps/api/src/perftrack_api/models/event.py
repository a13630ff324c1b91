"""Storefront performance event log."""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, Numeric, String, Text

from perftrack_api.db.base import Base

_ID_TYPE = BigInteger().with_variant(Integer(), "sqlite")


class PerformanceEvent(Base):
    """One immutable tracked storefront action."""

    __tablename__ = "performance_events"
    __table_args__ = (
        Index("ix_performance_events_event_type", "event_type"),
        Index("ix_performance_events_product_id", "product_id"),
        Index("ix_performance_events_created_at", "created_at"),
        Index("ix_performance_events_session_id", "session_id"),
    )

    id = Column(_ID_TYPE, primary_key=True, autoincrement=True)
    event_type = Column(String(length=50), nullable=False)
    product_id = Column(_ID_TYPE, nullable=True)
    order_id = Column(_ID_TYPE, nullable=True)
    user_id = Column(_ID_TYPE, nullable=True)
    session_id = Column(String(length=255), nullable=True)
    revenue = Column(Numeric(10, 2), nullable=True)
    metadata_text = Column("metadata", Text, nullable=True)
    ip_address = Column(String(length=45), nullable=True)
    user_agent = Column(String(length=255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    @property
    def metadata_payload(self) -> Any:
        if not self.metadata_text:
            return None
        try:
            return json.loads(self.metadata_text)
        except ValueError:
            return self.metadata_text

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "product_id": self.product_id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "revenue": f"{self.revenue:.2f}" if self.revenue is not None else None,
            "metadata": self.metadata_payload,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
