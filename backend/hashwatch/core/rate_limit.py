"""In-memory sliding-window limits for login attempts and scan submissions. Per process; use WAF/API Gateway in prod for scale."""
import time
from collections import deque
from typing import Callable

from hashwatch.core.config import get_settings

settings = get_settings()

WINDOW_SECONDS = 60.0


class SlidingWindowLimiter:
    """At most `limit` hits per key in any `window` seconds."""

    def __init__(self, limit: int, window: float = WINDOW_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window = window
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._last_sweep = clock()

    def _prune(self, key: str, now: float) -> deque[float]:
        hits = self._hits.get(key)
        if hits is None:
            return deque()
        while hits and now - hits[0] >= self.window:
            hits.popleft()
        if not hits:
            del self._hits[key]
        return hits

    def _sweep(self, now: float) -> None:
        """Drop keys whose newest hit has left the window. Runs at most once per window."""
        if now - self._last_sweep < self.window:
            return
        self._last_sweep = now
        for key in [k for k, hits in self._hits.items() if not hits or now - hits[-1] >= self.window]:
            del self._hits[key]

    def tracked_keys(self) -> int:
        return len(self._hits)

    def hit(self, key: str) -> bool:
        """Record one attempt. Returns True when the key is over its limit (the attempt is not counted)."""
        now = self._clock()
        self._sweep(now)
        hits = self._prune(key, now)
        if len(hits) >= self.limit:
            return True
        hits.append(now)
        self._hits[key] = hits
        return False

    def retry_after(self, key: str) -> int:
        """Whole seconds until the oldest hit leaves the window; 0 when not limited."""
        now = self._clock()
        hits = self._prune(key, now)
        if len(hits) < self.limit:
            return 0
        return max(1, int(self.window - (now - hits[0]) + 0.999))

    def reset(self) -> None:
        self._hits.clear()


login_limiter = SlidingWindowLimiter(settings.login_rate_limit_per_minute)
# Each new upload may cost provider quota, so submissions are limited per user.
scan_limiter = SlidingWindowLimiter(settings.scan_rate_limit_per_minute)


def is_login_rate_limited(identifier: str) -> bool:
    return login_limiter.hit(identifier.lower())


def is_scan_rate_limited(identifier: str) -> bool:
    return scan_limiter.hit(identifier)


def reset_rate_limits() -> None:
    login_limiter.reset()
    scan_limiter.reset()
