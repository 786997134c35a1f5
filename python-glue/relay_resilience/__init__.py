"""Rate limiting, circuit breaking and retries for outbound HTTP calls"""

from .clock import Clock, ManualClock, SystemClock
from .core import (
    Dependency,
    HttpxTransport,
    RateLimitInfo,
    Request,
    Response,
    Transport,
)
from .core.pipeline import ResiliencePipeline
from .exceptions import (
    CircuitOpenException,
    ConfigurationError,
    RateLimitExceeded,
    ResilienceError,
)
from .resilience import (
    BackoffPolicy,
    BackoffStrategy,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerPolicy,
    CircuitBreakerRegistry,
    CircuitState,
    MemoryCircuitStore,
    MemoryCounterStore,
    RateLimitConfig,
    RateLimiter,
    RedisCounterStore,
    RetryConfig,
    RetryDecider,
    RetryHandler,
    RetryPolicy,
    create_counter_store,
    retry_call,
    status_codes,
)

__version__ = "0.1.0"

__all__ = [
    "Clock",
    "ManualClock",
    "SystemClock",
    "Dependency",
    "HttpxTransport",
    "RateLimitInfo",
    "Request",
    "Response",
    "Transport",
    "ResiliencePipeline",
    "CircuitOpenException",
    "ConfigurationError",
    "RateLimitExceeded",
    "ResilienceError",
    "BackoffPolicy",
    "BackoffStrategy",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerPolicy",
    "CircuitBreakerRegistry",
    "CircuitState",
    "MemoryCircuitStore",
    "MemoryCounterStore",
    "RateLimitConfig",
    "RateLimiter",
    "RedisCounterStore",
    "RetryConfig",
    "RetryDecider",
    "RetryHandler",
    "RetryPolicy",
    "create_counter_store",
    "retry_call",
    "status_codes",
]
