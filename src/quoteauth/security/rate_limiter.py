"""In-memory token-bucket rate limiter for the public OAuth endpoints.

Pre-configured tiers:
  - token:   2 req/s, burst 20  (POST /token)
  - revoke:  2 req/s, burst 20  (POST /revoke)

Buckets idle for longer than ``max_age`` seconds are dropped, either by an
explicit ``cleanup()`` or by the sweep ``allow()`` runs once per ``max_age``.
"""

from __future__ import annotations

import threading
import time

__all__ = ["RateLimiter", "token_limiter", "revoke_limiter"]


class RateLimiter:
    """Token-bucket limiter keyed by client identifier (usually the IP).

    Parameters
    ----------
    rate : float
        Tokens added per second.
    capacity : int
        Maximum burst size.
    max_age : float
        Seconds a bucket may sit idle before it is evicted.
    """

    def __init__(self, rate: float, capacity: int, max_age: float = 3600.0):
        self.rate = rate
        self.capacity = capacity
        self.max_age = max_age
        # key -> (tokens, last_refill)
        self._buckets: dict[str, tuple[float, float]] = {}
        self._lock = threading.Lock()
        self._last_sweep = time.monotonic()

    def allow(self, key: str) -> bool:
        """Return True if the request is allowed, consuming one token."""
        now = time.monotonic()
        with self._lock:
            if now - self._last_sweep > self.max_age:
                self._sweep(now, self.max_age)
            tokens, last = self._buckets.get(key, (float(self.capacity), now))
            tokens = min(self.capacity, tokens + (now - last) * self.rate)
            if tokens < 1.0:
                self._buckets[key] = (tokens, now)
                return False
            self._buckets[key] = (tokens - 1.0, now)
            return True

    def cleanup(self, max_age: float | None = None) -> int:
        """Remove entries idle for more than *max_age* seconds. Returns count removed."""
        with self._lock:
            return self._sweep(time.monotonic(), self.max_age if max_age is None else max_age)

    def _sweep(self, now: float, max_age: float) -> int:
        stale = [k for k, (_, last) in self._buckets.items() if now - last > max_age]
        for k in stale:
            del self._buckets[k]
        self._last_sweep = now
        return len(stale)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


token_limiter = RateLimiter(rate=2.0, capacity=20)
revoke_limiter = RateLimiter(rate=2.0, capacity=20)
