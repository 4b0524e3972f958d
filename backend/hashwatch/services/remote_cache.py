"""Short-lived result cache in front of the analysis provider (keeps us under its request-rate ceiling).

Process-wide, per instance. Entries are replaced, never mutated, so concurrent
requests need no lock: last writer wins and staleness is bounded by the TTL.
"""
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    timestamp: float
    value: Any


class RemoteResultCache:
    def __init__(self, ttl_seconds: float = 15.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> CacheEntry | None:
        """Fresh entry for key, or None if missing/expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= self.ttl_seconds:
            return None
        return entry

    def set(self, key: str, value: Any, timestamp: float | None = None) -> None:
        self._entries[key] = CacheEntry(timestamp=self._clock() if timestamp is None else timestamp, value=value)

    def clear(self) -> None:
        self._entries.clear()

    async def call(self, key: str, fn: Callable[[], Awaitable[Any]]) -> tuple[Any, bool]:
        """Return (value, cache_hit). On miss await fn() and store its result; exceptions are not cached."""
        entry = self.get(key)
        if entry is not None:
            logger.debug("Using cached result for %s (%.0fs old)", key, self._clock() - entry.timestamp)
            return entry.value, True
        started = self._clock()
        value = await fn()
        self.set(key, value, timestamp=started)
        return value, False
