"""
Per-client, per-route rate limiting for webhook ingestion.

- InMemoryRateLimiter: fixed window per (client_id, route_key), bounded key
  count, expired windows swept periodically
- RedisRateLimiter: sliding-window log in a sorted set, shared across
  processes; fails open when Redis is unavailable
"""
import asyncio
import heapq
import logging
import math
import threading
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from hookgate.utils.metrics import now_ms
from hookgate.utils.scheduler import PeriodicTask

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    requests_per_window: int
    window_ms: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_time: int  # epoch ms
    retry_after_seconds: Optional[int] = None

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_time / 1000)),
        }
        if self.retry_after_seconds is not None:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


def client_id_from_request(request) -> str:
    """First X-Forwarded-For hop, else the socket peer, else 'unknown'."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


@dataclass
class _Window:
    count: int
    reset_time: int


class InMemoryRateLimiter:
    def __init__(
        self,
        max_keys: int = 10000,
        sweep_interval_seconds: float = 60.0,
        clock: Callable[[], int] = now_ms,
    ):
        self.max_keys = max_keys
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._sweeper = PeriodicTask("rate_limit_sweep", self._sweep_async, sweep_interval_seconds)

    def __len__(self) -> int:
        return len(self._windows)

    async def start(self) -> None:
        self._sweeper.start()

    async def stop(self) -> None:
        await self._sweeper.stop()

    async def check_limit(
        self, client_id: str, route_key: str, config: RateLimitConfig,
    ) -> RateLimitResult:
        return self.check_limit_sync(client_id, route_key, config)

    def check_limit_sync(
        self, client_id: str, route_key: str, config: RateLimitConfig,
    ) -> RateLimitResult:
        key = f"{client_id}:{route_key}"
        now = self._clock()
        with self._lock:
            window = self._windows.get(key)
            if window is None or now > window.reset_time:
                if window is None and len(self._windows) >= self.max_keys:
                    self._enforce_capacity(now)
                window = _Window(count=0, reset_time=now + config.window_ms)
                self._windows[key] = window
            window.count += 1
            count = window.count
            reset_time = window.reset_time

        allowed = count <= config.requests_per_window
        retry_after = None if allowed else max(1, math.ceil((reset_time - now) / 1000))
        if not allowed:
            logger.warning(
                "Rate limit exceeded: key=%s count=%d limit=%d",
                key, count, config.requests_per_window,
                extra={"client_ip": client_id},
            )
        return RateLimitResult(
            allowed=allowed,
            limit=config.requests_per_window,
            remaining=max(0, config.requests_per_window - count),
            reset_time=reset_time,
            retry_after_seconds=retry_after,
        )

    def _enforce_capacity(self, now: int) -> None:
        """Caller holds the lock. Sweep, then evict windows nearest their reset."""
        self._sweep_locked(now)
        overflow = len(self._windows) - self.max_keys + 1
        if overflow > 0:
            victims = heapq.nsmallest(
                overflow, self._windows.items(), key=lambda item: item[1].reset_time,
            )
            for key, _ in victims:
                del self._windows[key]
            logger.warning("Rate limiter at capacity (%d keys) - evicted %d", self.max_keys, overflow)

    def _sweep_locked(self, now: int) -> int:
        expired = [k for k, w in self._windows.items() if now > w.reset_time]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def sweep(self) -> int:
        """Drop expired windows. Returns how many were removed."""
        with self._lock:
            return self._sweep_locked(self._clock())

    async def _sweep_async(self) -> None:
        removed = self.sweep()
        if removed:
            logger.debug("Rate limiter sweep removed %d expired windows", removed)


class RedisRateLimiter:
    def __init__(self, redis_getter, key_prefix: str = "hookgate:ratelimit", clock: Callable[[], int] = now_ms):
        self._redis_getter = redis_getter
        self.key_prefix = key_prefix
        self._clock = clock

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    async def check_limit(
        self, client_id: str, route_key: str, config: RateLimitConfig,
    ) -> RateLimitResult:
        redis_key = f"{self.key_prefix}:{client_id}:{route_key}"
        now = self._clock()
        window_start = now - config.window_ms
        reset_time = now + config.window_ms
        try:
            redis = await self._redis_getter()
            pipe = redis.pipeline()
            pipe.zremrangebyscore(redis_key, 0, window_start)
            pipe.zadd(redis_key, {f"{now}-{uuid.uuid4().hex[:8]}": now})
            pipe.zcard(redis_key)
            pipe.pexpire(redis_key, config.window_ms + 1000)
            results = await pipe.execute()
            count = int(results[2])
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Redis failure should not block webhooks - allow through
            logger.warning("Rate limiter Redis error: %s. Allowing request.", str(e))
            return RateLimitResult(
                allowed=True,
                limit=config.requests_per_window,
                remaining=config.requests_per_window,
                reset_time=reset_time,
            )

        allowed = count <= config.requests_per_window
        if not allowed:
            logger.warning(
                "Rate limit exceeded: key=%s:%s count=%d limit=%d",
                client_id, route_key, count, config.requests_per_window,
                extra={"client_ip": client_id},
            )
        return RateLimitResult(
            allowed=allowed,
            limit=config.requests_per_window,
            remaining=max(0, config.requests_per_window - count),
            reset_time=reset_time,
            retry_after_seconds=None if allowed else max(1, math.ceil(config.window_ms / 1000)),
        )
