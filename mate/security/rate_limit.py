"""Per-user token-bucket rate limiting with idle-bucket eviction."""

from __future__ import annotations

import threading
import time
from typing import Callable

import structlog

logger = structlog.get_logger()

Clock = Callable[[], float]

DEFAULT_IDLE_SECONDS = 3600.0
DEFAULT_CLEANUP_INTERVAL = 300.0


class TokenBucket:
    """Tokens refill lazily at `refill_rate` per second, up to `capacity`."""

    def __init__(self, capacity: float, refill_rate: float, clock: Clock = time.monotonic) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")
        self.capacity = float(capacity)
        self.refill_rate = float(refill_rate)
        self._clock = clock
        now = clock()
        self.tokens = self.capacity
        self.last_refill = now
        self.last_used = now

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    def consume(self, n: float = 1) -> bool:
        """Take `n` tokens if available. Never blocks; a refusal leaves tokens unchanged."""
        if n <= 0:
            raise ValueError("n must be positive")
        self._refill()
        self.last_used = self.last_refill
        if self.tokens >= n:
            self.tokens -= n
            return True
        return False

    def available(self) -> float:
        """Current token count (for diagnostics); does not count as use."""
        self._refill()
        return self.tokens


class RateLimiter:
    """One bucket per user identity, evicted once idle for `idle_seconds`.

    A daemon thread owned by the limiter calls `cleanup()` every
    `cleanup_interval` seconds until `destroy()`.
    """

    def __init__(
        self,
        capacity: float,
        refill_rate: float,
        *,
        idle_seconds: float = DEFAULT_IDLE_SECONDS,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        clock: Clock = time.monotonic,
        start_timer: bool = True,
    ) -> None:
        if capacity <= 0 or refill_rate <= 0:
            raise ValueError("capacity and refill_rate must be positive")
        self._capacity = capacity
        self._refill_rate = refill_rate
        self._idle_seconds = idle_seconds
        self._cleanup_interval = cleanup_interval
        self._clock = clock
        self._buckets: dict[str, TokenBucket] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        if start_timer:
            self._thread = threading.Thread(
                target=self._cleanup_loop,
                name="rate-limiter-cleanup",
                daemon=True,
            )
            self._thread.start()

    @property
    def capacity(self) -> float:
        return self._capacity

    def check_and_consume(self, user_id: str) -> bool:
        with self._lock:
            bucket = self._buckets.get(user_id)
            if bucket is None:
                bucket = TokenBucket(self._capacity, self._refill_rate, clock=self._clock)
                self._buckets[user_id] = bucket
            return bucket.consume()

    def cleanup(self) -> int:
        """Drop buckets idle longer than the threshold; return how many were dropped."""
        now = self._clock()
        with self._lock:
            stale = [
                user_id
                for user_id, bucket in self._buckets.items()
                if now - bucket.last_used > self._idle_seconds
            ]
            for user_id in stale:
                del self._buckets[user_id]
        if stale:
            logger.debug("rate_limit_buckets_evicted", count=len(stale))
        return len(stale)

    def size(self) -> int:
        with self._lock:
            return len(self._buckets)

    def tokens_for(self, user_id: str) -> float | None:
        with self._lock:
            bucket = self._buckets.get(user_id)
            return None if bucket is None else bucket.available()

    def destroy(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2)
            self._thread = None
        with self._lock:
            self._buckets.clear()

    def _cleanup_loop(self) -> None:
        while not self._stop.wait(self._cleanup_interval):
            try:
                self.cleanup()
            except Exception as exc:  # keep the timer alive
                logger.warning("rate_limit_cleanup_failed", error=str(exc))
