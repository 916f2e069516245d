from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from chorus.core.providers.base import GenerationResult


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True, frozen=True)
class CacheEntry:
    key: str
    value: GenerationResult
    expires_at: datetime


class ResponseCache(ABC):
    """Advisory TTL cache; callers must tolerate a miss at any time."""

    @abstractmethod
    async def get(self, key: str) -> GenerationResult | None:
        raise NotImplementedError

    @abstractmethod
    async def put(self, key: str, value: GenerationResult, ttl_seconds: float) -> None:
        raise NotImplementedError

    async def clear(self) -> None:
        return None

    def stats(self) -> dict:
        return {}

    async def aclose(self) -> None:
        return None


class InMemoryResponseCache(ResponseCache):
    def __init__(self, *, max_entries: int = 1000, clock: Callable[[], datetime] = _utcnow) -> None:
        self.max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    async def get(self, key: str) -> GenerationResult | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    async def put(self, key: str, value: GenerationResult, ttl_seconds: float) -> None:
        now = self._clock()
        entry = CacheEntry(key=key, value=value, expires_at=now + timedelta(seconds=ttl_seconds))
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict(now)
            self._entries[key] = entry

    def _evict(self, now: datetime) -> None:
        expired = [k for k, e in self._entries.items() if now >= e.expires_at]
        for k in expired:
            del self._entries[k]
        if len(self._entries) >= self.max_entries:
            soonest = min(self._entries.values(), key=lambda e: e.expires_at)
            del self._entries[soonest.key]

    async def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict:
        with self._lock:
            lookups = self._hits + self._misses
            return {
                "backend": "memory",
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            }
