"""Circuit breaker pattern implementation"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Callable, Optional, Union

from ..clock import Clock, SystemClock
from ..core.contracts import Dependency, Request, Response
from ..core.keys import resolve_config, resolve_scope_key
from ..exceptions import CircuitOpenException
from ..observability import get_logger
from .circuit_store import CircuitState, CircuitStore, MemoryCircuitStore

logger = get_logger(__name__)

Hook = Callable[[str], None]


class CircuitBreakerPolicy(ABC):
    """Reusable circuit breaker settings and failure classification"""

    @abstractmethod
    def failure_threshold(self) -> int:
        pass

    @abstractmethod
    def reset_timeout(self) -> float:
        """Seconds before an open circuit admits trial requests"""
        pass

    @abstractmethod
    def half_open_requests(self) -> int:
        pass

    @abstractmethod
    def failure_window(self) -> float:
        pass

    @abstractmethod
    def success_threshold(self) -> int:
        pass

    def is_failure(self, request: Request, response: Response) -> bool:
        return response.is_server_error()

    def is_exception_failure(self, request: Request, exception: BaseException) -> bool:
        return True

    def on_open(self, key: str) -> None:
        pass

    def on_close(self, key: str) -> None:
        pass

    def on_half_open(self, key: str) -> None:
        pass


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration"""
    failure_threshold: int = 5
    reset_timeout: float = 30.0  # seconds before half-open
    half_open_requests: int = 3
    failure_window: float = 60.0  # seconds failures are counted for
    success_threshold: int = 1
    key: Optional[str] = None  # template with {field} placeholders
    failure_condition: Optional[Callable[[Response], bool]] = None
    on_open: Optional[Hook] = None
    on_close: Optional[Hook] = None
    on_half_open: Optional[Hook] = None
    policy: Optional[CircuitBreakerPolicy] = None

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.half_open_requests < 1:
            raise ValueError("half_open_requests must be at least 1")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be at least 1")
        if self.reset_timeout < 0 or self.failure_window < 0:
            raise ValueError("reset_timeout and failure_window cannot be negative")

    @classmethod
    def from_policy(
        cls,
        policy: CircuitBreakerPolicy,
        key: Optional[str] = None,
    ) -> "CircuitBreakerConfig":
        return cls(
            failure_threshold=policy.failure_threshold(),
            reset_timeout=policy.reset_timeout(),
            half_open_requests=policy.half_open_requests(),
            failure_window=policy.failure_window(),
            success_threshold=policy.success_threshold(),
            key=key,
            on_open=policy.on_open,
            on_close=policy.on_close,
            on_half_open=policy.on_half_open,
            policy=policy,
        )

    def resolved(self) -> "CircuitBreakerConfig":
        """Config with policy settings applied over the literal fields.

        Hooks passed explicitly win over the policy's own hook methods.
        """
        if self.policy is None:
            return self
        from_policy = CircuitBreakerConfig.from_policy(self.policy, key=self.key)
        return replace(
            from_policy,
            failure_condition=self.failure_condition,
            on_open=self.on_open or from_policy.on_open,
            on_close=self.on_close or from_policy.on_close,
            on_half_open=self.on_half_open or from_policy.on_half_open,
        )


class CircuitBreaker:
    """Circuit breaker for preventing cascading failures.

    State lives in the store, so several breaker objects built for the same
    key share one circuit. There is no background timer: an open circuit
    becomes half-open the first time its state is read after
    ``reset_timeout`` has elapsed.
    """

    def __init__(
        self,
        store: CircuitStore,
        config: CircuitBreakerConfig,
        key: str,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.config = config.resolved()
        self.key = key
        self.clock = clock or getattr(store, "clock", None) or SystemClock()

    @property
    def state(self) -> CircuitState:
        """Get current circuit breaker state"""
        state = self.store.get_state(self.key)

        if state == CircuitState.OPEN:
            opened_at = self.store.get_opened_at(self.key)
            if opened_at is not None and self.clock.now() - opened_at >= self.config.reset_timeout:
                self._half_open()
                return self.store.get_state(self.key)

        return state

    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    def is_half_open(self) -> bool:
        return self.state == CircuitState.HALF_OPEN

    def allow_request(self) -> bool:
        """
        Check whether a request may proceed

        Raises:
            CircuitOpenException: If the circuit is open, or half-open with
                every trial slot taken
        """
        state = self.state

        if state == CircuitState.CLOSED:
            return True

        if state == CircuitState.OPEN:
            raise CircuitOpenException.open(self.retry_after(), self.key)

        if self.store.try_acquire_half_open(self.key, self.config.half_open_requests):
            return True

        raise CircuitOpenException.half_open_at_capacity(self.key)

    def record_success(self) -> None:
        """Handle successful call"""
        if self.state != CircuitState.HALF_OPEN:
            return

        successes = self.store.record_success(self.key)
        if successes >= self.config.success_threshold:
            if self.store.transition(self.key, CircuitState.CLOSED, expected=CircuitState.HALF_OPEN):
                logger.info(f"Circuit '{self.key}' closed after {successes} successful trial(s)")
                self._fire("on_close")

    def record_failure(self) -> None:
        """Handle failed call"""
        state = self.state

        if state == CircuitState.HALF_OPEN:
            if self.store.transition(
                self.key, CircuitState.OPEN, expected=CircuitState.HALF_OPEN, now=self.clock.now()
            ):
                logger.warning(f"Circuit '{self.key}' reopened after a failed trial")
                self._fire("on_open")
            return

        if state == CircuitState.CLOSED:
            failures = self.store.record_failure(self.key, self.config.failure_window)
            if failures >= self.config.failure_threshold:
                if self.store.transition(
                    self.key, CircuitState.OPEN, expected=CircuitState.CLOSED, now=self.clock.now()
                ):
                    logger.warning(
                        f"Circuit '{self.key}' opened after {failures} failure(s) "
                        f"within {self.config.failure_window}s"
                    )
                    self._fire("on_open")

    def record(
        self,
        request: Request,
        outcome: Union[Response, BaseException],
        default: Optional[Callable[[Response], bool]] = None,
    ) -> bool:
        """Record a response or exception; returns whether it counted as a failure"""
        failed = self.is_failure(request, outcome, default)
        if failed:
            self.record_failure()
        else:
            self.record_success()
        return failed

    def is_failure(
        self,
        request: Request,
        outcome: Union[Response, BaseException],
        default: Optional[Callable[[Response], bool]] = None,
    ) -> bool:
        """Classify an outcome: policy, then failure_condition, then the default rule"""
        policy = self.config.policy

        if isinstance(outcome, BaseException):
            if policy is not None:
                return policy.is_exception_failure(request, outcome)
            return True

        if policy is not None:
            return policy.is_failure(request, outcome)
        if self.config.failure_condition is not None:
            return bool(self.config.failure_condition(outcome))
        if default is not None:
            return bool(default(outcome))
        return outcome.is_server_error()

    def open(self) -> None:
        """Force the circuit open"""
        self.store.transition(self.key, CircuitState.OPEN, now=self.clock.now())
        logger.warning(f"Circuit '{self.key}' forced open")
        self._fire("on_open")

    def close(self) -> None:
        """Force the circuit closed"""
        self.store.transition(self.key, CircuitState.CLOSED)
        logger.info(f"Circuit '{self.key}' forced closed")
        self._fire("on_close")

    def reset(self) -> None:
        """Restore a closed circuit with zeroed counters, without hooks"""
        self.store.reset(self.key)

    def retry_after(self) -> float:
        """Seconds until an open circuit admits trial requests"""
        opened_at = self.store.get_opened_at(self.key)
        if opened_at is None:
            return self.config.reset_timeout
        return max(0.0, self.config.reset_timeout - (self.clock.now() - opened_at))

    def _half_open(self) -> None:
        if self.store.transition(self.key, CircuitState.HALF_OPEN, expected=CircuitState.OPEN):
            logger.info(f"Circuit '{self.key}' half-open, admitting up to "
                        f"{self.config.half_open_requests} trial request(s)")
            self._fire("on_half_open")

    def _fire(self, hook_name: str) -> None:
        hook = getattr(self.config, hook_name)
        if hook is None:
            return
        try:
            hook(self.key)
        except Exception:
            logger.exception(f"Circuit '{self.key}' {hook_name} hook failed")


class CircuitBreakerRegistry:
    """Builds breakers for calls from request and dependency configuration"""

    def __init__(self, store: Optional[CircuitStore] = None, clock: Optional[Clock] = None):
        self.clock = clock or getattr(store, "clock", None) or SystemClock()
        self.store = store if store is not None else MemoryCircuitStore(self.clock)

    def get_config(self, dependency: Dependency, request: Request) -> Optional[CircuitBreakerConfig]:
        return resolve_config(request.circuit_breaker, dependency.circuit_breaker())

    def breaker(self, key: str, config: CircuitBreakerConfig) -> CircuitBreaker:
        # Breakers hold no state of their own, the store is shared
        return CircuitBreaker(self.store, config, key, self.clock)

    def for_call(self, dependency: Dependency, request: Request) -> Optional[CircuitBreaker]:
        """Breaker guarding this call, None when circuit breaking is disabled"""
        config = self.get_config(dependency, request)
        if config is None:
            return None
        key = resolve_scope_key(dependency, request, config.key)
        return self.breaker(key, config)
