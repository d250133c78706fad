from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass
class Bucket:
    tokens: float
    last_ts: float


class InMemoryRateLimiter:
    """
    Token bucket per (client address, route), process local.

    capacity: burst size; refill_per_sec: sustained rate.
    Full buckets are dropped once max_buckets is reached, so a stream of
    distinct addresses cannot grow the table without bound.
    """
    def __init__(self, capacity: int, refill_per_sec: float, max_buckets: int = 10000):
        self.capacity = float(capacity)
        self.refill_per_sec = float(refill_per_sec)
        self.max_buckets = max_buckets
        self._buckets: Dict[Tuple[str, str], Bucket] = {}

    def _refill(self, b: Bucket, now: float) -> None:
        elapsed = max(0.0, now - b.last_ts)
        b.tokens = min(self.capacity, b.tokens + elapsed * self.refill_per_sec)
        b.last_ts = now

    def _prune(self, now: float) -> None:
        for k, b in list(self._buckets.items()):
            self._refill(b, now)
            if b.tokens >= self.capacity:
                del self._buckets[k]

    def allow(self, client_key: str, route_key: str, cost: float = 1.0) -> bool:
        now = time.monotonic()
        k = (client_key, route_key)
        b = self._buckets.get(k)
        if b is None:
            if len(self._buckets) >= self.max_buckets:
                self._prune(now)
            b = Bucket(tokens=self.capacity, last_ts=now)
            self._buckets[k] = b

        self._refill(b, now)
        if b.tokens >= cost:
            b.tokens -= cost
            return True
        return False

    def retry_after(self, client_key: str, route_key: str, cost: float = 1.0) -> int:
        """Whole seconds until `cost` tokens are available again (at least 1)."""
        b = self._buckets.get((client_key, route_key))
        if b is None or self.refill_per_sec <= 0:
            return 60
        missing = max(0.0, cost - b.tokens)
        return max(1, math.ceil(missing / self.refill_per_sec))
