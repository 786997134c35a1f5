"""Resilience patterns: retry, circuit breaker, rate limiting"""

from .retry import (
    RetryConfig,
    RetryDecider,
    RetryHandler,
    RetryPolicy,
    retry_call,
    status_codes,
)
from .circuit_store import CircuitRecord, CircuitState, CircuitStore, MemoryCircuitStore
from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerPolicy,
    CircuitBreakerRegistry,
)
from .rate_limit_config import BackoffPolicy, BackoffStrategy, RateLimitConfig
from .counter_store import (
    CounterStore,
    MemoryCounterStore,
    RateLimitBucket,
    RedisCounterStore,
    create_counter_store,
)
from .rate_limiter import RateLimiter

__all__ = [
    "RetryConfig",
    "RetryDecider",
    "RetryHandler",
    "RetryPolicy",
    "retry_call",
    "status_codes",
    "CircuitRecord",
    "CircuitState",
    "CircuitStore",
    "MemoryCircuitStore",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerPolicy",
    "CircuitBreakerRegistry",
    "BackoffPolicy",
    "BackoffStrategy",
    "RateLimitConfig",
    "CounterStore",
    "MemoryCounterStore",
    "RateLimitBucket",
    "RedisCounterStore",
    "create_counter_store",
    "RateLimiter",
]
