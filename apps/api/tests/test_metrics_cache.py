from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from perftrack_api.domain.analytics import ProductSortField
from perftrack_api.services.cache import (
    MISS,
    DatabaseCacheBackend,
    Hit,
    MemoryCacheBackend,
    MetricsCache,
    derive_cache_key,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class BrokenBackend:
    async def get(self, key: str) -> str | None:
        raise ConnectionError("cache down")

    async def set(self, key: str, payload: str, ttl_seconds: int) -> None:
        raise ConnectionError("cache down")

    async def delete(self, key: str) -> None:
        raise ConnectionError("cache down")

    async def flush(self, prefix: str) -> int:
        raise ConnectionError("cache down")

    async def count(self, prefix: str) -> int | None:
        raise ConnectionError("cache down")


class FailingReadSession:
    def __init__(self) -> None:
        self.rollbacks = 0

    async def get(self, *args, **kwargs):
        raise OperationalError("SELECT metric_cache_entries", {}, Exception("connection reset"))

    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT count(*)", {}, Exception("connection reset"))

    async def rollback(self) -> None:
        self.rollbacks += 1


def test_cache_key_ignores_parameter_order() -> None:
    first = derive_cache_key("products", {"limit": 10, "orderby": ProductSortField.VIEWS, "date_from": date(2024, 1, 1)})
    second = derive_cache_key("products", {"date_from": "2024-01-01", "orderby": "views", "limit": 10})

    assert first == second
    assert first.startswith("products:")
    assert derive_cache_key("stats", {"limit": 10}) != derive_cache_key("stats", {"limit": 11})
    assert derive_cache_key("stats", {"limit": 10}) != derive_cache_key("timeline", {"limit": 10})


@pytest.mark.asyncio
async def test_falsy_values_are_hits() -> None:
    cache = MetricsCache(MemoryCacheBackend(), namespace="test")

    for key, value in {"zero": 0, "false": False, "empty": [], "none": None}.items():
        assert await cache.set(key, value) is True
        result = await cache.get(key)
        assert isinstance(result, Hit)
        assert result.value == value

    assert await cache.get("never-set") is MISS
    assert not MISS


@pytest.mark.asyncio
async def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = MetricsCache(MemoryCacheBackend(clock=clock), namespace="test", default_ttl_seconds=300)

    await cache.set("stats:abc", {"views": 1})
    await cache.set("stats:short", {"views": 2}, ttl_seconds=60)

    clock.now += 61
    assert await cache.get("stats:short") is MISS
    assert await cache.get("stats:abc") == Hit({"views": 1})

    clock.now += 240
    assert await cache.get("stats:abc") is MISS


@pytest.mark.asyncio
async def test_flush_only_touches_own_namespace() -> None:
    backend = MemoryCacheBackend()
    ours = MetricsCache(backend, namespace="perftrack")
    theirs = MetricsCache(backend, namespace="other")

    await ours.set("stats:a", 1)
    await ours.set("timeline:b", 2)
    await theirs.set("stats:a", 3)

    assert await ours.flush() == 2
    assert await ours.get("stats:a") is MISS
    assert await theirs.get("stats:a") == Hit(3)


@pytest.mark.asyncio
async def test_decimals_are_stored_as_strings() -> None:
    cache = MetricsCache(MemoryCacheBackend(), namespace="test")

    await cache.set("stats:x", {"revenue": Decimal("12.50")})

    assert await cache.get("stats:x") == Hit({"revenue": "12.50"})


@pytest.mark.asyncio
async def test_backend_outage_degrades_to_miss() -> None:
    cache = MetricsCache(BrokenBackend(), namespace="test")

    assert await cache.set("stats:a", 1) is False
    assert await cache.get("stats:a") is MISS
    assert await cache.flush() is None
    assert await cache.is_available() is False

    stats = await cache.stats()
    assert stats["cache_available"] is False
    assert stats["cached_items"] is None


@pytest.mark.asyncio
async def test_stats_reports_live_entries() -> None:
    cache = MetricsCache(MemoryCacheBackend(), namespace="test", default_ttl_seconds=120)
    await cache.set("stats:a", 1)
    await cache.set("stats:b", 2)

    stats = await cache.stats()

    assert stats == {
        "namespace": "test",
        "cached_items": 2,
        "cache_available": True,
        "default_ttl_seconds": 120,
    }


@pytest.mark.asyncio
async def test_database_backend_round_trip(session_factory) -> None:
    async with session_factory() as session:
        cache = MetricsCache(DatabaseCacheBackend(session, namespace="perftrack"), namespace="perftrack")

        assert await cache.get("funnel:abc") is MISS
        assert await cache.set("funnel:abc", {"views": 0}) is True
        assert await cache.set("funnel:abc", {"views": 4}) is True
        assert await cache.get("funnel:abc") == Hit({"views": 4})
        assert (await cache.stats())["cached_items"] == 1

        assert await cache.flush() == 1
        assert await cache.get("funnel:abc") is MISS


@pytest.mark.asyncio
async def test_database_backend_read_failure_rolls_back_session() -> None:
    session = FailingReadSession()
    backend = DatabaseCacheBackend(session, namespace="perftrack")
    cache = MetricsCache(backend, namespace="perftrack")

    assert await cache.get("stats:abc") is MISS
    assert session.rollbacks == 1

    with pytest.raises(OperationalError):
        await backend.count("perftrack:")
    assert session.rollbacks == 2
