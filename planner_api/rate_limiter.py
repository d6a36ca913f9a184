"""Fixed-window rate limiting for report generation.

RateLimiter.check_rate_limit(key, path) returns a RateLimitResult carrying
everything needed for the IETF headers:

    RateLimit-Policy: "<policy_id>"; q=<quota>; w=<window>
    RateLimit:        "<policy_id>"; r=<remaining>; t=<reset>

Implementations:
  NoOpRateLimiter      : always allows (tests, disabled limiting)
  InMemoryRateLimiter  : process-local fixed window
  RedisRateLimiter     : INCR + EXPIRE, shared across workers
"""

import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

import redis

from planner_api.config.env import get_redis_url, get_report_rate_limit


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    policy_id: str
    quota: int
    window: int
    remaining: int
    reset: int

    def headers(self) -> dict[str, str]:
        headers = {
            "RateLimit-Policy": f'"{self.policy_id}"; q={self.quota}; w={self.window}',
            "RateLimit": f'"{self.policy_id}"; r={self.remaining}; t={self.reset}',
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.reset)
        return headers


class RateLimiter(ABC):
    def __init__(self, quota: int, window: int, policy_id: str = "report-generate"):
        self.quota = quota
        self.window = window
        self.policy_id = policy_id

    @abstractmethod
    def check_rate_limit(self, key: str, path: str) -> RateLimitResult:
        """Count one hit for `key` on `path` and report the outcome."""
        ...

    def _result(self, count: int, reset: int) -> RateLimitResult:
        return RateLimitResult(
            allowed=count <= self.quota,
            policy_id=self.policy_id,
            quota=self.quota,
            window=self.window,
            remaining=max(self.quota - count, 0),
            reset=max(reset, 0),
        )


class NoOpRateLimiter(RateLimiter):
    def __init__(self, quota: int = 10, window: int = 86400, policy_id: str = "report-generate"):
        super().__init__(quota, window, policy_id)

    def check_rate_limit(self, key: str, path: str) -> RateLimitResult:
        return RateLimitResult(
            allowed=True,
            policy_id=self.policy_id,
            quota=self.quota,
            window=self.window,
            remaining=self.quota,
            reset=self.window,
        )


class InMemoryRateLimiter(RateLimiter):
    def __init__(
        self,
        quota: int,
        window: int,
        policy_id: str = "report-generate",
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(quota, window, policy_id)
        self._clock = clock
        self._window_start: Optional[int] = None
        self._counts: dict[str, int] = {}  # bucket → count in the current window
        self._lock = threading.Lock()

    def check_rate_limit(self, key: str, path: str) -> RateLimitResult:
        now = int(self._clock())
        window_start = now - (now % self.window)
        bucket = f"{path}:{key}"

        with self._lock:
            # windows are aligned, so every bucket expires together
            if window_start != self._window_start:
                self._counts.clear()
                self._window_start = window_start
            count = self._counts.get(bucket, 0) + 1
            self._counts[bucket] = count

        return self._result(count, window_start + self.window - now)


class RedisRateLimiter(RateLimiter):
    """Fixed window keyed by window index; the first hit sets the TTL."""

    def __init__(
        self,
        client: redis.Redis,
        quota: int,
        window: int,
        policy_id: str = "report-generate",
        prefix: str = "planner:ratelimit",
    ):
        super().__init__(quota, window, policy_id)
        self.client = client
        self.prefix = prefix

    def check_rate_limit(self, key: str, path: str) -> RateLimitResult:
        now = int(time.time())
        window_index = now // self.window
        redis_key = f"{self.prefix}:{path}:{key}:{window_index}"

        pipe = self.client.pipeline()
        pipe.incr(redis_key)
        pipe.expire(redis_key, self.window, nx=True)
        count, _ = pipe.execute()

        reset = (window_index + 1) * self.window - now
        return self._result(int(count), reset)


def build_report_rate_limiter(redis_client: Optional[redis.Redis] = None) -> RateLimiter:
    """Rate limiter for POST /report/generate from environment configuration."""
    quota, window = get_report_rate_limit()
    if redis_client is None:
        redis_url = get_redis_url()
        if redis_url:
            redis_client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30,
            )
    if redis_client is not None:
        return RedisRateLimiter(redis_client, quota=quota, window=window)
    return InMemoryRateLimiter(quota=quota, window=window)
