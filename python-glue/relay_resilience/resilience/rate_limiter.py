"""Client-side rate limiting over a fixed-window counter store"""

import math
from typing import Optional

from ..clock import Clock, SystemClock
from ..core.contracts import Dependency, RateLimitInfo, Request
from ..core.keys import resolve_config, resolve_scope_key
from ..exceptions import RateLimitExceeded
from ..observability import get_logger
from .counter_store import CounterStore, MemoryCounterStore
from .rate_limit_config import BackoffPolicy, BackoffStrategy, RateLimitConfig
from .retry import RetryConfig

logger = get_logger(__name__)

# Exponential backoff stops doubling after this many steps
MAX_BACKOFF_EXPONENT = 32


class RateLimiter:
    """Admits or refuses calls before they are sent"""

    def __init__(
        self,
        store: Optional[CounterStore] = None,
        default_config: Optional[RateLimitConfig] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize rate limiter

        Args:
            store: Counter backend (defaults to an in-memory store on the same clock)
            default_config: Dependency-level limit used when the request declares none
            clock: Time source for reset hints
        """
        self.clock = clock or getattr(store, "clock", None) or SystemClock()
        self.store = store if store is not None else MemoryCounterStore(self.clock)
        self.default_config = default_config

    def get_config(self, request: Request) -> Optional[RateLimitConfig]:
        return resolve_config(request.rate_limit, self.default_config)

    def resolve_key(self, dependency: Dependency, request: Request) -> str:
        config = self.get_config(request)
        template = config.key if config is not None else None
        return resolve_scope_key(dependency, request, template)

    def check(self, dependency: Dependency, request: Request) -> None:
        """
        Count the call against its limit

        Raises:
            RateLimitExceeded: If the call is over the limit for the current window
        """
        config = self.get_config(request)
        if config is None:
            return

        key = self.resolve_key(dependency, request)
        if self.store.attempt(key, config.requests, config.per_seconds):
            return

        over_limit = max(1, self.store.get_count(key) - config.requests)
        hint = self._seconds_until_reset(key)
        delay_ms = self.calculate_backoff(request, config, over_limit, hint)

        logger.warning(
            f"Rate limit exceeded for '{key}': {config.requests} per {config.per_seconds}s",
            extra={"extra": {"rate_limit_key": key, "retry_after_ms": delay_ms}},
        )
        raise RateLimitExceeded.exceeded(
            limit=config.requests,
            remaining=0,
            retry_after=delay_ms / 1000,
        )

    def get_state(self, dependency: Dependency, request: Request) -> Optional[RateLimitInfo]:
        config = self.get_config(request)
        if config is None:
            return None

        key = self.resolve_key(dependency, request)
        return RateLimitInfo(
            limit=config.requests,
            remaining=self.store.get_remaining(key, config.requests),
            reset=self.store.get_reset_time(key),
        )

    def calculate_backoff(
        self,
        request: Request,
        config: RateLimitConfig,
        attempt: int,
        retry_after_hint: Optional[float] = None,
    ) -> int:
        """
        Delay in milliseconds before the given retry attempt

        Built-in strategies never wait past the end of the window when
        ``retry_after_hint`` (seconds until reset) is known.
        """
        backoff = config.backoff
        base = config.backoff_base

        if isinstance(backoff, type) and issubclass(backoff, BackoffPolicy):
            backoff = backoff()
        if isinstance(backoff, BackoffPolicy):
            hint = int(math.ceil(retry_after_hint)) if retry_after_hint else 0
            return int(backoff.calculate_delay(request, attempt, hint))

        if backoff == BackoffStrategy.EXPONENTIAL:
            delay = base * 2 ** min(attempt - 1, MAX_BACKOFF_EXPONENT)
        elif backoff == BackoffStrategy.LINEAR:
            delay = base * attempt
        else:
            delay = base

        if retry_after_hint is not None:
            delay = min(delay, int(math.ceil(retry_after_hint * 1000)))
        return int(delay)

    def get_retry_config(self, request: Request) -> Optional[RetryConfig]:
        """Retry settings for rate-limited calls, None unless the limit has retry enabled"""
        config = self.get_config(request)
        if config is None or not config.retry:
            return None

        exponential = config.backoff == BackoffStrategy.EXPONENTIAL
        return RetryConfig(
            times=config.max_retries,
            delay=config.backoff_base,
            multiplier=2.0 if exponential else 1.0,
            exceptions=(RateLimitExceeded,),
        )

    def _seconds_until_reset(self, key: str) -> Optional[float]:
        reset = self.store.get_reset_time(key)
        if reset is None:
            return None
        return max(0.0, reset - self.clock.now())
