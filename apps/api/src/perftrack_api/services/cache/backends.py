"""Storage backends for the metrics cache.

Backends only ever see serialized text, so an absent entry (``None``) can never
be confused with a cached falsy value such as ``false`` or ``[]``.
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import timedelta, timezone
from typing import AsyncIterator, Callable, Protocol

from redis.asyncio import Redis
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from perftrack_api.domain.analytics import utcnow
from perftrack_api.models.metric_cache import MetricCacheEntry


class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, payload: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def flush(self, prefix: str) -> int: ...

    async def count(self, prefix: str) -> int | None: ...


class MemoryCacheBackend:
    """Per-process dictionary with monotonic expiry."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        payload, expires_at = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return payload

    async def set(self, key: str, payload: str, ttl_seconds: int) -> None:
        self._entries[key] = (payload, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def flush(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            self._entries.pop(key, None)
        return len(doomed)

    async def count(self, prefix: str) -> int | None:
        now = self._clock()
        return sum(
            1
            for key, (_, expires_at) in self._entries.items()
            if key.startswith(prefix) and expires_at > now
        )


class RedisCacheBackend:
    """Shared cache in Redis; expiry handled by ``SET ... EX``."""

    def __init__(self, redis_client: Redis | None = None, *, url: str | None = None) -> None:
        if redis_client is None:
            if not url:
                raise ValueError("redis_client or url is required")
            redis_client = Redis.from_url(url, encoding="utf-8", decode_responses=True)
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        value = await self._redis.get(key)
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else value

    async def set(self, key: str, payload: str, ttl_seconds: int) -> None:
        await self._redis.set(key, payload, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def flush(self, prefix: str) -> int:
        keys = [key async for key in self._redis.scan_iter(match=f"{prefix}*", count=500)]
        if not keys:
            return 0
        removed = 0
        for start in range(0, len(keys), 500):
            removed += int(await self._redis.delete(*keys[start : start + 500]))
        return removed

    async def count(self, prefix: str) -> int | None:
        return len([key async for key in self._redis.scan_iter(match=f"{prefix}*", count=500)])


class DatabaseCacheBackend:
    """Durable cache rows in ``metric_cache_entries``; expired rows are evicted on read."""

    def __init__(self, session: AsyncSession, *, namespace: str) -> None:
        self._session = session
        self._namespace = namespace

    @asynccontextmanager
    async def _writing(self) -> AsyncIterator[None]:
        try:
            yield
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            raise

    @asynccontextmanager
    async def _reading(self) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError:
            await self._session.rollback()
            raise

    async def get(self, key: str) -> str | None:
        async with self._reading():
            record = await self._session.get(MetricCacheEntry, key)
        if record is None:
            return None

        expires_at = record.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= utcnow():
            await self.delete(key)
            return None
        return record.payload

    async def set(self, key: str, payload: str, ttl_seconds: int) -> None:
        now = utcnow()
        expires_at = now + timedelta(seconds=ttl_seconds)
        async with self._writing():
            record = await self._session.get(MetricCacheEntry, key)
            if record:
                record.payload = payload
                record.computed_at = now
                record.expires_at = expires_at
            else:
                self._session.add(
                    MetricCacheEntry(
                        cache_key=key,
                        namespace=self._namespace,
                        payload=payload,
                        computed_at=now,
                        expires_at=expires_at,
                    )
                )

    async def delete(self, key: str) -> None:
        async with self._writing():
            await self._session.execute(delete(MetricCacheEntry).where(MetricCacheEntry.cache_key == key))

    async def flush(self, prefix: str) -> int:
        async with self._writing():
            result = await self._session.execute(
                delete(MetricCacheEntry).where(MetricCacheEntry.cache_key.startswith(prefix, autoescape=True))
            )
        return int(result.rowcount or 0)

    async def count(self, prefix: str) -> int | None:
        async with self._reading():
            result = await self._session.execute(
                select(func.count())
                .select_from(MetricCacheEntry)
                .where(MetricCacheEntry.cache_key.startswith(prefix, autoescape=True))
                .where(MetricCacheEntry.expires_at > utcnow())
            )
        return int(result.scalar_one() or 0)


__all__ = [
    "CacheBackend",
    "DatabaseCacheBackend",
    "MemoryCacheBackend",
    "RedisCacheBackend",
]
