"""Per-IP token buckets guarding /oauth/authorize and /oauth/token.

Each app owns its limiters (see ``build_services``), so limits are per
process. They slow down code and verifier guessing against one worker; they
are not a cluster-wide quota.
"""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

__all__ = ["RateLimiter", "RateLimitInfo"]


@dataclass(frozen=True)
class RateLimitInfo:
    """Outcome of one ``RateLimiter.check()`` call."""

    allowed: bool
    limit: int
    remaining: int
    retry_after: float = 0.0

    def headers(self) -> dict[str, str]:
        values = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }
        if not self.allowed:
            values["Retry-After"] = str(max(1, math.ceil(self.retry_after)))
        return values


class RateLimiter:
    """Token bucket per client key.

    *rate* tokens per second refill a bucket of *capacity* tokens. Idle
    buckets are pruned once more than *max_keys* clients are tracked.
    """

    def __init__(
        self,
        rate: float,
        capacity: int,
        max_keys: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rate = rate
        self.capacity = capacity
        self.max_keys = max_keys
        self._clock = clock
        # key -> (tokens, last refill time)
        self._buckets: dict[str, tuple[float, float]] = {}
        self._lock = threading.Lock()

    def check(self, key: str) -> RateLimitInfo:
        """Spend one token for *key* if it has one."""
        with self._lock:
            now = self._clock()
            tokens, last = self._buckets.get(key, (float(self.capacity), now))
            tokens = min(float(self.capacity), tokens + (now - last) * self.rate)

            if tokens >= 1.0:
                tokens -= 1.0
                self._store(key, tokens, now)
                return RateLimitInfo(True, self.capacity, int(tokens))

            self._store(key, tokens, now)
            wait = (1.0 - tokens) / self.rate if self.rate > 0 else 1.0
            return RateLimitInfo(False, self.capacity, 0, wait)

    def _store(self, key: str, tokens: float, now: float) -> None:
        self._buckets[key] = (tokens, now)
        if len(self._buckets) > self.max_keys:
            self._prune(now)

    def _prune(self, now: float) -> None:
        # A bucket that would be full again carries no state worth keeping
        full_after = self.capacity / self.rate if self.rate > 0 else float("inf")
        idle = [k for k, (_, last) in self._buckets.items() if now - last >= full_after]
        for k in idle:
            del self._buckets[k]

    def __len__(self) -> int:
        return len(self._buckets)

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
