"""Namespaced metrics cache with TTL expiry and all-or-nothing invalidation."""

from __future__ import annotations

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping

from loguru import logger

from .backends import CacheBackend
from .result import MISS, CacheResult, Hit

DEFAULT_TTL_SECONDS = 300
_AVAILABILITY_PROBE_KEY = "__probe__"


def _normalize(value: Any) -> Any:
    if isinstance(value, Enum):
        return _normalize(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _normalize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    return value


def derive_cache_key(scope: str, params: Mapping[str, Any]) -> str:
    """Stable digest of a query's full parameter set; key order never matters."""

    canonical = json.dumps(_normalize(params), sort_keys=True, separators=(",", ":"))
    digest = hashlib.md5(canonical.encode("utf-8")).hexdigest()
    return f"{scope}:{digest}"


class MetricsCache:
    """Memoizes computed metric payloads.

    Values are JSON-encoded before they reach the backend and decoded on the way
    out. Backend failures degrade to a miss on read and a no-op on write so the
    caller always falls through to a fresh computation.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        namespace: str = "perftrack",
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._backend = backend
        self._namespace = namespace
        self._prefix = f"{namespace}:"
        self._default_ttl = default_ttl_seconds

    @property
    def default_ttl_seconds(self) -> int:
        return self._default_ttl

    def _full_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> CacheResult:
        try:
            raw = await self._backend.get(self._full_key(key))
        except Exception as exc:  # noqa: BLE001 - any backend outage is a miss
            logger.warning("Metrics cache read failed; treating as miss", cache_key=key, error=str(exc))
            return MISS

        if raw is None:
            return MISS

        try:
            return Hit(json.loads(raw))
        except ValueError:
            logger.warning("Discarding undecodable metrics cache entry", cache_key=key)
            await self.delete(key)
            return MISS

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        ttl = max(int(ttl_seconds if ttl_seconds is not None else self._default_ttl), 1)
        payload = json.dumps(_normalize(value), separators=(",", ":"))
        try:
            await self._backend.set(self._full_key(key), payload, ttl)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Metrics cache write failed", cache_key=key, error=str(exc))
            return False
        return True

    async def delete(self, key: str) -> bool:
        try:
            await self._backend.delete(self._full_key(key))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Metrics cache delete failed", cache_key=key, error=str(exc))
            return False
        return True

    async def flush(self) -> int | None:
        """Drop every entry in this namespace; returns the count when known."""

        try:
            removed = await self._backend.flush(self._prefix)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Metrics cache flush failed", namespace=self._namespace, error=str(exc))
            return None
        logger.info("Metrics cache flushed", namespace=self._namespace, removed=removed)
        return removed

    async def is_available(self) -> bool:
        token = f"probe-{datetime.now().timestamp()}"
        if not await self.set(_AVAILABILITY_PROBE_KEY, token, 60):
            return False
        result = await self.get(_AVAILABILITY_PROBE_KEY)
        await self.delete(_AVAILABILITY_PROBE_KEY)
        return isinstance(result, Hit) and result.value == token

    async def stats(self) -> dict[str, Any]:
        available = await self.is_available()
        cached_items: int | None = None
        if available:
            try:
                cached_items = await self._backend.count(self._prefix)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Metrics cache count failed", error=str(exc))
        return {
            "namespace": self._namespace,
            "cached_items": cached_items,
            "cache_available": available,
            "default_ttl_seconds": self._default_ttl,
        }


__all__ = ["DEFAULT_TTL_SECONDS", "MetricsCache", "derive_cache_key"]
