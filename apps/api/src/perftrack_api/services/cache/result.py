"""Explicit present/absent results for cache reads."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True, slots=True)
class Hit:
    value: Any


class _Miss:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISS"

    def __bool__(self) -> bool:
        return False


MISS = _Miss()

CacheResult = Union[Hit, _Miss]


__all__ = ["CacheResult", "Hit", "MISS"]
