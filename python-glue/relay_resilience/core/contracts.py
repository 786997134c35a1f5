"""Call, dependency and outcome objects the resilience layer works against"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Union

import httpx

if TYPE_CHECKING:
    from ..clock import Clock
    from ..resilience.circuit_breaker import CircuitBreakerConfig
    from ..resilience.rate_limit_config import RateLimitConfig
    from ..resilience.retry import RetryConfig

_UNSET: Any = object()


@dataclass(frozen=True)
class RateLimitInfo:
    """Rate limit state: configured limit, remaining calls and reset time"""
    limit: Optional[int]
    remaining: Optional[int]
    reset: Optional[float] = None  # epoch seconds

    def reset_at(self) -> Optional[datetime]:
        if self.reset is None:
            return None
        return datetime.fromtimestamp(self.reset, tz=timezone.utc)

    def seconds_until_reset(self, clock: "Clock") -> Optional[float]:
        if self.reset is None:
            return None
        return max(0.0, self.reset - clock.now())


class Request:
    """Base class for an outbound call.

    Resilience configuration is attached explicitly. Class attributes act as
    the per-call declaration shared by every instance; constructor keywords
    and the ``with_*`` builders override them on a single instance. Public
    instance attributes are available to ``{field}`` key templates.
    """

    method: str = "GET"
    endpoint: str = "/"

    rate_limit: Optional["RateLimitConfig"] = None
    retry: Optional["RetryConfig"] = None
    circuit_breaker: Optional["CircuitBreakerConfig"] = None

    def __init__(
        self,
        *,
        rate_limit: Optional["RateLimitConfig"] = _UNSET,
        retry: Optional["RetryConfig"] = _UNSET,
        circuit_breaker: Optional["CircuitBreakerConfig"] = _UNSET,
    ):
        if rate_limit is not _UNSET:
            self.rate_limit = rate_limit
        if retry is not _UNSET:
            self.retry = retry
        if circuit_breaker is not _UNSET:
            self.circuit_breaker = circuit_breaker

    def with_rate_limit(self, config: Optional["RateLimitConfig"]) -> "Request":
        self.rate_limit = config
        return self

    def with_retry(self, config: Optional["RetryConfig"]) -> "Request":
        self.retry = config
        return self

    def with_circuit_breaker(self, config: Optional["CircuitBreakerConfig"]) -> "Request":
        self.circuit_breaker = config
        return self

    def headers(self) -> Dict[str, str]:
        return {}

    def query(self) -> Dict[str, Any]:
        return {}

    def body(self) -> Optional[Any]:
        """JSON body, if any"""
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.method} {self.endpoint}>"


class Dependency:
    """The remote service a call is made against.

    Supplies the scope identity used for default rate limit and circuit keys,
    and dependency-wide default configuration. ``None`` disables a feature.
    """

    base_url: str = ""

    @property
    def identity(self) -> str:
        cls = type(self)
        return f"{cls.__module__}.{cls.__qualname__}"

    def rate_limit(self) -> Optional["RateLimitConfig"]:
        return None

    def retry(self) -> Optional["RetryConfig"]:
        return None

    def circuit_breaker(self) -> Optional["CircuitBreakerConfig"]:
        return None

    def is_failure(self, response: "Response") -> bool:
        """Whether a response counts as a failure for the circuit breaker"""
        return response.is_server_error()


def _coerce_headers(headers: Union[httpx.Headers, Mapping[str, str], None]) -> httpx.Headers:
    if isinstance(headers, httpx.Headers):
        return headers
    return httpx.Headers(headers or {})


@dataclass(frozen=True)
class Response:
    """Outcome of a transport call"""
    status: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""
    duration_ms: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "headers", _coerce_headers(self.headers))

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> "Response":
        elapsed = None
        try:
            elapsed = response.elapsed.total_seconds() * 1000
        except RuntimeError:
            # elapsed is only set once the response has been closed
            pass
        return cls(
            status=response.status_code,
            headers=response.headers,
            body=response.content,
            duration_ms=elapsed,
        )

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name)

    def successful(self) -> bool:
        return 200 <= self.status < 300

    def is_client_error(self) -> bool:
        return 400 <= self.status < 500

    def is_server_error(self) -> bool:
        return self.status >= 500

    def failed(self) -> bool:
        return self.is_client_error() or self.is_server_error()

    def rate_limit_info(self) -> Optional[RateLimitInfo]:
        """Parse X-RateLimit-* headers, None when neither limit nor remaining is sent"""
        limit = _parse_int(self.header("X-RateLimit-Limit"))
        remaining = _parse_int(self.header("X-RateLimit-Remaining"))
        if limit is None and remaining is None:
            return None

        reset = _parse_int(self.header("X-RateLimit-Reset"))
        return RateLimitInfo(
            limit=limit,
            remaining=remaining,
            reset=float(reset) if reset is not None else None,
        )

    def retry_after(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds to wait according to Retry-After (delta-seconds or HTTP-date)"""
        value = self.header("Retry-After")
        if value is None:
            return None

        seconds = _parse_int(value)
        if seconds is not None:
            return float(max(0, seconds))

        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        if now is None:
            now = datetime.now(timezone.utc).timestamp()
        return max(0.0, when.timestamp() - now)


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


class Transport(ABC):
    """Performs the wire call for a request"""

    @abstractmethod
    def send(self, dependency: Dependency, request: Request) -> Response:
        """Send the request, raising on transport failure"""
        pass

    def close(self) -> None:
        pass


class HttpxTransport(Transport):
    """Transport over a synchronous httpx client"""

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        timeout: float = 30.0,
    ):
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client"""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def build_url(self, dependency: Dependency, request: Request) -> str:
        base = dependency.base_url.rstrip("/")
        endpoint = request.endpoint.lstrip("/")
        return f"{base}/{endpoint}" if base else f"/{endpoint}"

    def send(self, dependency: Dependency, request: Request) -> Response:
        response = self._get_client().request(
            request.method,
            self.build_url(dependency, request),
            params=request.query() or None,
            headers=request.headers() or None,
            json=request.body(),
        )
        return Response.from_httpx(response)

    def close(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
