"""SQLAlchemy models package."""

from .event import PerformanceEvent  # noqa: F401
from .metric_cache import MetricCacheEntry  # noqa: F401

__all__ = ["PerformanceEvent", "MetricCacheEntry"]
