"""Fixed-window request counters keyed by (bucket, client).

The limiter is process-local and owned by the application instance. The number
of tracked buckets is capped: when the cap is exceeded the bucket with the
oldest reset time is evicted, so a flood of distinct client identifiers costs a
bounded amount of memory at the price of forgetting the stalest counters.
"""

import logging
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from starlette.requests import Request

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"

READ_BUCKET = "read"
DECISION_BUCKET = "decision"


@dataclass(frozen=True)
class RateLimit:
    max_requests: int
    window_seconds: float


@dataclass
class RateBucket:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after: int = 0


class RateLimiter:
    def __init__(
        self,
        limits: Mapping[str, RateLimit],
        max_buckets: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_buckets < 1:
            raise ValueError("max_buckets must be positive")
        self._limits = dict(limits)
        self._max_buckets = max_buckets
        self._clock = clock
        self._buckets: dict[str, RateBucket] = {}

    def __len__(self) -> int:
        return len(self._buckets)

    def check(self, bucket: str, client_id: str) -> RateLimitResult:
        limit = self._limits[bucket]
        now = self._clock()
        self._expire(now)

        key = f"{bucket}:{client_id}"
        state = self._buckets.get(key)
        if state is None:
            self._evict_overflow()
            self._buckets[key] = RateBucket(count=1, reset_at=now + limit.window_seconds)
            return RateLimitResult(allowed=True)

        if state.count >= limit.max_requests:
            retry_after = max(1, math.ceil(state.reset_at - now))
            return RateLimitResult(allowed=False, retry_after=retry_after)

        state.count += 1
        return RateLimitResult(allowed=True)

    def _expire(self, now: float) -> None:
        stale = [key for key, state in self._buckets.items() if state.reset_at <= now]
        for key in stale:
            del self._buckets[key]

    def _evict_overflow(self) -> None:
        if len(self._buckets) < self._max_buckets:
            return
        oldest = min(self._buckets, key=lambda key: self._buckets[key].reset_at)
        del self._buckets[oldest]
        logger.debug("Rate limiter at capacity (%d buckets), evicted oldest", self._max_buckets)


def client_identifier(request: Request, trusted_header: str = "cf-connecting-ip") -> str:
    """Resolve the caller: trusted proxy header, first forwarded hop, else a shared bucket."""
    if trusted_header:
        real_ip = request.headers.get(trusted_header, "").strip()
        if real_ip:
            return real_ip
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return UNKNOWN_CLIENT
