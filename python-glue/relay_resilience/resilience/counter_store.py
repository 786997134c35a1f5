"""Fixed-window counter storage for rate limiting"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Optional

import redis

from ..clock import Clock, SystemClock
from ..config.settings import ResilienceSettings
from ..observability import get_logger

logger = get_logger(__name__)

KEY_PREFIX = "relay:ratelimit:"


@dataclass
class RateLimitBucket:
    """Attempt count for one key within one fixed window"""
    count: int
    window_start: float
    window_size: float

    def is_valid(self, now: float) -> bool:
        return now - self.window_start < self.window_size

    @property
    def reset_time(self) -> float:
        return self.window_start + self.window_size


class CounterStore(ABC):
    """Abstract base class for rate limit counter backends"""

    @abstractmethod
    def attempt(self, key: str, limit: int, window: float) -> bool:
        """
        Count an attempt against the key's current window

        The attempt is counted even when it is rejected.

        Returns:
            True if the post-increment count is within ``limit``
        """
        pass

    @abstractmethod
    def get_count(self, key: str) -> int:
        """Attempts in the current window, 0 if absent or expired"""
        pass

    def get_remaining(self, key: str, limit: int) -> int:
        return max(0, limit - self.get_count(key))

    @abstractmethod
    def get_reset_time(self, key: str) -> Optional[float]:
        """Epoch seconds at which the current window ends"""
        pass

    @abstractmethod
    def reset(self, key: str) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass


class MemoryCounterStore(CounterStore):
    """Process-local counter store"""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self._buckets: Dict[str, RateLimitBucket] = {}
        self._lock = Lock()

    def _live_bucket(self, key: str, now: float) -> Optional[RateLimitBucket]:
        """Bucket for key if still inside its window (must be called with lock held)"""
        bucket = self._buckets.get(key)
        if bucket is None:
            return None
        if not bucket.is_valid(now):
            del self._buckets[key]
            return None
        return bucket

    def attempt(self, key: str, limit: int, window: float) -> bool:
        with self._lock:
            now = self.clock.now()
            bucket = self._live_bucket(key, now)
            if bucket is None:
                bucket = RateLimitBucket(count=0, window_start=now, window_size=window)
                self._buckets[key] = bucket

            bucket.count += 1
            return bucket.count <= limit

    def get_count(self, key: str) -> int:
        with self._lock:
            bucket = self._live_bucket(key, self.clock.now())
            return bucket.count if bucket else 0

    def get_reset_time(self, key: str) -> Optional[float]:
        with self._lock:
            bucket = self._live_bucket(key, self.clock.now())
            return bucket.reset_time if bucket else None

    def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


# Window rollover, increment and comparison in one server-side step so
# concurrent workers cannot admit more than ``limit`` calls per window.
ATTEMPT_SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

local start = tonumber(redis.call('HGET', key, 'window_start'))
local size = tonumber(redis.call('HGET', key, 'window_size'))

if (not start) or (not size) or (now - start >= size) then
    redis.call('DEL', key)
    redis.call('HSET', key, 'count', 0, 'window_start', ARGV[3], 'window_size', ARGV[2])
    start = now
    size = window
end

local count = redis.call('HINCRBY', key, 'count', 1)

local ttl = math.ceil((start + size - now) * 1000)
if ttl < 1 then
    ttl = 1
end
redis.call('PEXPIRE', key, ttl)

if count <= limit then
    return {1, count}
end
return {0, count}
"""


def get_redis_client(redis_url: Optional[str] = None) -> redis.Redis:
    """Create a Redis client (defaults to RELAY_REDIS_URL or REDIS_URL)"""
    url = redis_url or ResilienceSettings().redis_url or "redis://localhost:6379"
    return redis.Redis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )


class RedisCounterStore(CounterStore):
    """Counter store shared by every worker connected to the same Redis.

    Buckets are hashes under ``relay:ratelimit:<key>``. "Now" comes from the
    injected clock and is passed to the server, so all workers must share a
    reasonably synchronized clock.
    """

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        redis_url: Optional[str] = None,
        clock: Optional[Clock] = None,
        prefix: str = KEY_PREFIX,
        fail_open: bool = True,
    ):
        self.client = client if client is not None else get_redis_client(redis_url)
        self.clock = clock or SystemClock()
        self.prefix = prefix
        self.fail_open = fail_open
        self._attempt_script = self.client.register_script(ATTEMPT_SCRIPT)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _unavailable(self, operation: str, error: Exception) -> None:
        if not self.fail_open:
            raise error
        logger.warning(
            f"Rate limit store unavailable during {operation}, allowing request: {error}"
        )

    def _load(self, key: str) -> Optional[RateLimitBucket]:
        count, start, size = self.client.hmget(
            self._key(key), "count", "window_start", "window_size"
        )
        if count is None or start is None or size is None:
            return None

        bucket = RateLimitBucket(
            count=int(count),
            window_start=float(start),
            window_size=float(size),
        )
        if not bucket.is_valid(self.clock.now()):
            return None
        return bucket

    def attempt(self, key: str, limit: int, window: float) -> bool:
        try:
            allowed, _count = self._attempt_script(
                keys=[self._key(key)],
                args=[limit, repr(float(window)), repr(self.clock.now())],
            )
        except redis.RedisError as e:
            self._unavailable("attempt", e)
            return True
        return int(allowed) == 1

    def get_count(self, key: str) -> int:
        try:
            bucket = self._load(key)
        except redis.RedisError as e:
            self._unavailable("get_count", e)
            return 0
        return bucket.count if bucket else 0

    def get_reset_time(self, key: str) -> Optional[float]:
        try:
            bucket = self._load(key)
        except redis.RedisError as e:
            self._unavailable("get_reset_time", e)
            return None
        return bucket.reset_time if bucket else None

    def reset(self, key: str) -> None:
        try:
            self.client.delete(self._key(key))
        except redis.RedisError as e:
            self._unavailable("reset", e)

    def clear(self) -> None:
        """Delete every bucket under this store's prefix"""
        try:
            keys = list(self.client.scan_iter(match=f"{self.prefix}*"))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as e:
            self._unavailable("clear", e)


def create_counter_store(
    redis_url: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> CounterStore:
    """
    Create a counter store

    Args:
        redis_url: Redis connection URL (defaults to RELAY_REDIS_URL or REDIS_URL)
        clock: Time source shared with the rate limiter

    Returns:
        RedisCounterStore when a Redis URL is configured, else MemoryCounterStore
    """
    url = redis_url or ResilienceSettings().redis_url
    if url:
        return RedisCounterStore(redis_url=url, clock=clock)
    return MemoryCounterStore(clock=clock)
