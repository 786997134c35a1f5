"""Send loop combining rate limiting, circuit breaking and retries"""

from typing import Optional

from ..clock import Clock, SystemClock
from ..exceptions import RateLimitExceeded
from ..observability import get_logger
from ..observability.logging import attempt_var, dependency_var
from ..resilience.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from ..resilience.circuit_store import CircuitStore
from ..resilience.counter_store import CounterStore
from ..resilience.rate_limiter import RateLimiter
from ..resilience.retry import RetryHandler
from .contracts import Dependency, HttpxTransport, RateLimitInfo, Request, Response, Transport

logger = get_logger(__name__)


class ResiliencePipeline:
    """Sends requests to one dependency under its resilience configuration.

    Each attempt is admitted by the rate limiter and the circuit breaker,
    sent through the transport, recorded on the breaker and then handed to
    the retry handler. When retries run out the last response is returned
    or the last transport error re-raised.
    """

    def __init__(
        self,
        dependency: Dependency,
        transport: Optional[Transport] = None,
        *,
        counter_store: Optional[CounterStore] = None,
        circuit_store: Optional[CircuitStore] = None,
        clock: Optional[Clock] = None,
    ):
        self.dependency = dependency
        self.clock = clock or SystemClock()
        self.transport = transport or HttpxTransport()
        self.rate_limiter = RateLimiter(counter_store, dependency.rate_limit(), self.clock)
        self.retry_handler = RetryHandler(dependency.retry(), self.clock)
        self.circuits = CircuitBreakerRegistry(circuit_store, self.clock)

    def __enter__(self) -> "ResiliencePipeline":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.transport.close()

    def breaker_for(self, request: Request) -> Optional[CircuitBreaker]:
        return self.circuits.for_call(self.dependency, request)

    def rate_limit_state(self, request: Request) -> Optional[RateLimitInfo]:
        return self.rate_limiter.get_state(self.dependency, request)

    def send(self, request: Request) -> Response:
        """
        Send a request, retrying per its configuration

        Raises:
            RateLimitExceeded: If the client-side limit refuses the call
            CircuitOpenException: If the circuit refuses the call
            Exception: The last transport error once retries are exhausted
        """
        dependency_token = dependency_var.set(self.dependency.identity)
        attempt_token = attempt_var.set(None)
        breaker = self.breaker_for(request)
        retries = 0

        try:
            while True:
                attempt_var.set(retries + 1)
                self._admit(request)
                if breaker is not None:
                    breaker.allow_request()

                logger.debug(f"Sending {request.method} {request.endpoint}")
                retry_after = None
                try:
                    response = self.transport.send(self.dependency, request)
                except Exception as e:
                    if breaker is not None:
                        breaker.record(request, e)
                    if not self.retry_handler.should_retry_exception(request, e, retries):
                        raise
                    logger.info(f"{type(e).__name__} on {request.endpoint}, retrying")
                else:
                    if breaker is not None:
                        breaker.record(request, response, self.dependency.is_failure)
                    if not self.retry_handler.should_retry_response(request, response, retries):
                        return response
                    logger.info(f"Status {response.status} from {request.endpoint}, retrying")
                    retry_after = response.retry_after(self.clock.now())

                retries += 1
                self._wait(request, retries, retry_after)
        finally:
            attempt_var.reset(attempt_token)
            dependency_var.reset(dependency_token)

    def _admit(self, request: Request) -> None:
        """Rate limit check, waiting between checks when the limit allows retries"""
        retry_config = self.rate_limiter.get_retry_config(request)
        waits = 0

        while True:
            try:
                self.rate_limiter.check(self.dependency, request)
                return
            except RateLimitExceeded as e:
                if retry_config is None or waits >= retry_config.times:
                    raise
                waits += 1
                wait = e.retry_after or 0
                logger.info(
                    f"Rate limited, waiting {wait:.3f}s ({waits}/{retry_config.times})"
                )
                self.clock.sleep(wait)

    def _wait(self, request: Request, retries: int, retry_after: Optional[float]) -> None:
        """Back off before a retry, never shorter than a server's Retry-After"""
        if retry_after is None:
            self.retry_handler.sleep(request, retries)
            return

        delay_ms = max(self.retry_handler.calculate_delay(request, retries), int(retry_after * 1000))
        if delay_ms > 0:
            self.clock.sleep(delay_ms / 1000)
