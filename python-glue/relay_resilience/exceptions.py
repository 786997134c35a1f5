"""Errors raised by the resilience layer"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .core.contracts import Response


class ResilienceError(Exception):
    """Base class for resilience errors"""
    pass


class ConfigurationError(ResilienceError):
    """Malformed resilience configuration file"""
    pass


class RateLimitExceeded(ResilienceError):
    """Request refused because a rate limit was hit.

    Raised proactively by the client-side limiter before a request is sent,
    or built from a server's 429 response with ``from_response``.
    ``retry_after`` is in seconds.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        limit: Optional[int] = None,
        remaining: Optional[int] = None,
        retry_after: Optional[float] = None,
        response: Optional["Response"] = None,
    ):
        super().__init__(message)
        self.limit = limit
        self.remaining = remaining
        self.retry_after = retry_after
        self.response = response

    @classmethod
    def exceeded(
        cls,
        limit: int,
        remaining: int,
        retry_after: Optional[float],
    ) -> "RateLimitExceeded":
        """Client-side refusal, no request was sent"""
        return cls(
            "Rate limit exceeded",
            limit=limit,
            remaining=remaining,
            retry_after=retry_after,
        )

    @classmethod
    def from_response(cls, response: "Response", now: Optional[float] = None) -> "RateLimitExceeded":
        """Server-side refusal parsed from rate limit headers.

        ``now`` is the epoch time an HTTP-date Retry-After is measured
        against, the wall clock when omitted.
        """
        info = response.rate_limit_info()
        return cls(
            "Rate limit exceeded",
            limit=info.limit if info else None,
            remaining=info.remaining if info else None,
            retry_after=response.retry_after(now),
            response=response,
        )

    @property
    def is_client_side(self) -> bool:
        return self.response is None

    @property
    def is_server_side(self) -> bool:
        return self.response is not None


class CircuitOpenException(ResilienceError):
    """Request refused by an open or saturated circuit breaker"""

    status_code = 503

    def __init__(self, message: str, retry_after: float, key: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after
        self.key = key

    @classmethod
    def open(cls, retry_after: float, key: Optional[str] = None) -> "CircuitOpenException":
        return cls("Circuit breaker is open", retry_after, key)

    @classmethod
    def half_open_at_capacity(cls, key: Optional[str] = None) -> "CircuitOpenException":
        return cls("Circuit breaker is half-open and at capacity", 1, key)
