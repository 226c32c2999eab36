"""Per-client token bucket rate limiting."""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass
class TokenBucket:
    """Replenishing pool of request permits for one client."""

    tokens: float
    updated_at: float
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def refill(self, now: float, capacity: float, rate: float) -> None:
        """Add tokens for the time elapsed since the last refill, capped at capacity."""
        elapsed = max(0.0, now - self.updated_at)
        self.tokens = min(capacity, self.tokens + elapsed * rate)
        self.updated_at = now


class RateLimiter:
    """
    Token bucket rate limiter keyed by client identity.

    Each client gets a bucket holding up to ``rate`` tokens, refilled at
    ``rate`` tokens per second. Every admitted request consumes one token;
    requests arriving at an empty bucket are rejected immediately.

    Buckets that have been idle long enough to refill completely are dropped
    by a periodic sweep. A dropped bucket is recreated full on the client's
    next request, which is the state it would have been in anyway.
    """

    def __init__(
        self,
        rate: int,
        enabled: bool = True,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize limiter with a per-second request budget."""
        self.rate = float(rate)
        self.capacity = float(rate)
        self.enabled = enabled and rate > 0
        self.sweep_interval = sweep_interval
        self.clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._table_lock = threading.Lock()
        self._last_sweep = clock()

    def __len__(self) -> int:
        return len(self._buckets)

    def check(self, client_key: str) -> bool:
        """
        Try to admit one request from a client.

        Args:
            client_key: Client identity, usually the remote address

        Returns:
            True if the request is admitted, False if the bucket is empty
        """
        if not self.enabled:
            return True

        now = self.clock()
        self._maybe_sweep(now)
        bucket = self._get_bucket(client_key, now)

        with bucket.lock:
            bucket.refill(now, self.capacity, self.rate)
            if bucket.tokens >= 1.0:
                bucket.tokens -= 1.0
                return True

        logger.info(f"Rate limit exceeded for client {client_key}")
        return False

    def _get_bucket(self, client_key: str, now: float) -> TokenBucket:
        bucket = self._buckets.get(client_key)
        if bucket is not None:
            return bucket
        with self._table_lock:
            bucket = self._buckets.get(client_key)
            if bucket is None:
                bucket = TokenBucket(tokens=self.capacity, updated_at=now)
                self._buckets[client_key] = bucket
            return bucket

    def _maybe_sweep(self, now: float) -> None:
        """Drop buckets that would be full again by now."""
        if now - self._last_sweep < self.sweep_interval:
            return
        with self._table_lock:
            if now - self._last_sweep < self.sweep_interval:
                return
            self._last_sweep = now
            idle = [
                key
                for key, bucket in self._buckets.items()
                if bucket.tokens + (now - bucket.updated_at) * self.rate >= self.capacity
            ]
            for key in idle:
                del self._buckets[key]

        if idle:
            logger.debug(f"Swept {len(idle)} idle rate limit buckets")
