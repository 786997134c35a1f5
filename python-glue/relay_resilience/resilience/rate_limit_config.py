"""Rate limit configuration and backoff strategies"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Type, Union

if TYPE_CHECKING:
    from ..core.contracts import Request


class BackoffStrategy(str, Enum):
    """Built-in backoff curves for rate-limited retries"""
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


class BackoffPolicy(ABC):
    """Custom backoff curve for rate-limited retries"""

    @abstractmethod
    def calculate_delay(self, request: "Request", attempt: int, retry_after: int = 0) -> int:
        """
        Delay in milliseconds before the given attempt

        Args:
            request: The request being rate limited
            attempt: Retry attempt, 1-based
            retry_after: Server or window hint in seconds, 0 if absent
        """
        pass


Backoff = Union[str, BackoffStrategy, BackoffPolicy, Type[BackoffPolicy]]


@dataclass(frozen=True)
class RateLimitConfig:
    """Fixed-window rate limit: ``requests`` per ``per_seconds``"""
    requests: int
    per_seconds: float
    key: Optional[str] = None  # template with {field} placeholders
    retry: bool = False  # wait and retry instead of raising
    max_retries: int = 3
    backoff: Backoff = BackoffStrategy.EXPONENTIAL
    backoff_base: int = 1_000  # milliseconds

    def __post_init__(self):
        if self.requests < 1:
            raise ValueError("requests must be at least 1")
        if self.per_seconds <= 0:
            raise ValueError("per_seconds must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
