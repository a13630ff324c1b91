"""Metrics cache layer and backend selection."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from perftrack_api.core.settings import Settings

from .backends import CacheBackend, DatabaseCacheBackend, MemoryCacheBackend, RedisCacheBackend
from .layer import DEFAULT_TTL_SECONDS, MetricsCache, derive_cache_key
from .result import MISS, CacheResult, Hit

_MEMORY_BACKEND = MemoryCacheBackend()
_REDIS_BACKEND: RedisCacheBackend | None = None


def get_memory_backend() -> MemoryCacheBackend:
    return _MEMORY_BACKEND


def _get_redis_backend(url: str) -> RedisCacheBackend:
    global _REDIS_BACKEND

    if _REDIS_BACKEND is None:
        _REDIS_BACKEND = RedisCacheBackend(url=url)
    return _REDIS_BACKEND


def build_metrics_cache(config: Settings, session: AsyncSession | None = None) -> MetricsCache:
    """Assemble the cache configured by ``cache_backend``."""

    backend: CacheBackend
    if config.cache_backend == "redis":
        backend = _get_redis_backend(config.redis_url)
    elif config.cache_backend == "database" and session is not None:
        backend = DatabaseCacheBackend(session, namespace=config.cache_namespace)
    else:
        backend = _MEMORY_BACKEND
    return MetricsCache(
        backend,
        namespace=config.cache_namespace,
        default_ttl_seconds=config.cache_duration_seconds,
    )


__all__ = [
    "CacheResult",
    "DEFAULT_TTL_SECONDS",
    "DatabaseCacheBackend",
    "Hit",
    "MISS",
    "MemoryCacheBackend",
    "MetricsCache",
    "RedisCacheBackend",
    "build_metrics_cache",
    "derive_cache_key",
    "get_memory_backend",
]
