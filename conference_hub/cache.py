"""TTL cache for slot query inputs, invalidated per room when rules or blackouts change."""
from __future__ import annotations

from datetime import date
from typing import Generic, Optional, TypeVar

from cachetools import TTLCache

from .config import get_settings

T = TypeVar("T")


class SimpleTTLCache(Generic[T]):
    def __init__(self, ttl: int, maxsize: int = 256) -> None:
        self._cache: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl)

    def get(self, key: str) -> Optional[T]:
        return self._cache.get(key)

    def set(self, key: str, value: T) -> None:
        self._cache[key] = value

    def pop(self, key: str) -> None:
        self._cache.pop(key, None)

    def pop_prefix(self, prefix: str) -> int:
        """Drop every entry whose key starts with ``prefix``; returns how many went."""
        stale = [key for key in list(self._cache.keys()) if key.startswith(prefix)]
        for key in stale:
            self._cache.pop(key, None)
        return len(stale)

    def clear(self) -> None:
        self._cache.clear()


def slot_cache_key(room_id: int, target: date) -> str:
    return f"slots:{room_id}:{target.isoformat()}"


def room_cache_prefix(room_id: int) -> str:
    return f"slots:{room_id}:"


# Holds rules and blackouts only. Bookings are read on every query, so the
# bookings service never has to reach this process-local cache.
slot_cache: SimpleTTLCache = SimpleTTLCache(ttl=get_settings().slot_cache_ttl)


def invalidate_room(room_id: int) -> None:
    slot_cache.pop_prefix(room_cache_prefix(room_id))
