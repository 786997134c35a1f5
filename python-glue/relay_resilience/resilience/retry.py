"""Retry configuration, policies and the retry decision engine"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import (
    Callable,
    FrozenSet,
    Iterable,
    Optional,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from ..clock import Clock, SystemClock
from ..core.contracts import Request, Response
from ..core.keys import resolve_config
from ..observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy(ABC):
    """Reusable retry settings and decisions.

    When a config carries a policy, the policy's numbers replace the literal
    ``times``/``delay``/``multiplier``/``max_delay`` and its decisions replace
    every other retry rule.
    """

    @abstractmethod
    def times(self) -> int:
        """Maximum number of retries"""
        pass

    @abstractmethod
    def delay(self) -> int:
        """Initial delay in milliseconds"""
        pass

    @abstractmethod
    def multiplier(self) -> float:
        pass

    @abstractmethod
    def max_delay(self) -> int:
        """Delay cap in milliseconds"""
        pass

    @abstractmethod
    def should_retry(self, request: Request, response: Response, attempt: int) -> bool:
        pass

    @abstractmethod
    def should_retry_exception(self, request: Request, exception: BaseException, attempt: int) -> bool:
        pass


class RetryDecider(ABC):
    """Pluggable retry/no-retry decision"""

    @abstractmethod
    def __call__(self, request: Request, response: Response, attempt: int) -> bool:
        pass

    def decide_exception(
        self,
        request: Request,
        exception: BaseException,
        attempt: int,
    ) -> Optional[bool]:
        """Decision for an exception, None to defer to the configured exception types"""
        return None


PolicyRef = Union[RetryPolicy, Type[RetryPolicy]]
DeciderRef = Union[RetryDecider, Type[RetryDecider], str]


@dataclass(frozen=True)
class RetryConfig:
    """Retry configuration. Delays are in milliseconds."""
    times: int = 3
    delay: int = 100
    multiplier: float = 2.0
    max_delay: int = 30_000
    status_codes: FrozenSet[int] = frozenset()
    exceptions: Tuple[Type[BaseException], ...] = ()
    when: Optional[Callable[[Response], bool]] = None
    policy: Optional[PolicyRef] = None
    decider: Optional[DeciderRef] = None  # RetryDecider or name of a request method

    def __post_init__(self):
        # Accept any iterable for the two collections
        if not isinstance(self.status_codes, frozenset):
            object.__setattr__(self, "status_codes", frozenset(self.status_codes))
        if not isinstance(self.exceptions, tuple):
            object.__setattr__(self, "exceptions", tuple(self.exceptions))


def _resolve_policy(policy: object) -> Optional[RetryPolicy]:
    if policy is None:
        return None
    if isinstance(policy, RetryPolicy):
        return policy
    if isinstance(policy, type) and issubclass(policy, RetryPolicy):
        return policy()
    logger.debug(f"Ignoring retry policy {policy!r}: not a RetryPolicy")
    return None


def _resolve_decider(decider: object) -> Optional[RetryDecider]:
    if isinstance(decider, RetryDecider):
        return decider
    if isinstance(decider, type) and issubclass(decider, RetryDecider):
        return decider()
    return None


class RetryHandler:
    """Decides whether and when a failed call is retried.

    ``attempt`` is the number of retries already made for the call: 0 when
    the first response comes back, 1 after the first retry, and so on.
    Delays are computed for the retry about to be made, so the first retry
    uses ``calculate_delay(request, 1)``.
    """

    def __init__(
        self,
        default_config: Optional[RetryConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.default_config = default_config
        self.clock = clock or SystemClock()

    def get_config(self, request: Request) -> Optional[RetryConfig]:
        """Retry config for a request, with policy numbers applied"""
        config = resolve_config(request.retry, self.default_config)
        if config is None:
            return None

        policy = _resolve_policy(config.policy)
        if policy is None:
            return replace(config, policy=None) if config.policy is not None else config

        return replace(
            config,
            times=policy.times(),
            delay=policy.delay(),
            multiplier=policy.multiplier(),
            max_delay=policy.max_delay(),
            policy=policy,
        )

    def should_retry_response(self, request: Request, response: Response, attempt: int) -> bool:
        config = self.get_config(request)
        if config is None or attempt >= config.times:
            return False

        if config.policy is not None:
            return bool(config.policy.should_retry(request, response, attempt))

        if config.decider is not None:
            decision = self._decide(config.decider, request, response, attempt)
            if decision is not None:
                return decision

        if config.when is not None:
            return bool(config.when(response))

        if config.status_codes:
            return response.status in config.status_codes

        return response.is_server_error()

    def should_retry_exception(self, request: Request, exception: BaseException, attempt: int) -> bool:
        config = self.get_config(request)
        if config is None or attempt >= config.times:
            return False

        if config.policy is not None:
            return bool(config.policy.should_retry_exception(request, exception, attempt))

        decider = _resolve_decider(config.decider)
        if decider is not None:
            decision = decider.decide_exception(request, exception, attempt)
            if decision is not None:
                return bool(decision)

        if config.exceptions:
            return isinstance(exception, config.exceptions)

        # Unknown exceptions are not retried
        return False

    def calculate_delay(self, request: Request, attempt: int) -> int:
        """Delay in milliseconds before the given retry (1-based)"""
        config = self.get_config(request)
        if config is None:
            return 0

        exponent = max(0, attempt - 1)
        try:
            delay = config.delay * config.multiplier ** exponent
        except OverflowError:
            return config.max_delay
        return int(min(delay, config.max_delay))

    def sleep(self, request: Request, attempt: int) -> int:
        """Block for the delay before the given retry; returns the delay in ms"""
        delay = self.calculate_delay(request, attempt)
        if delay <= 0:
            return 0

        self.clock.sleep(delay / 1000)
        return delay

    def _decide(
        self,
        decider: DeciderRef,
        request: Request,
        response: Response,
        attempt: int,
    ) -> Optional[bool]:
        """Run a decider object or request method, None if it can't be resolved"""
        resolved = _resolve_decider(decider)
        if resolved is not None:
            return bool(resolved(request, response, attempt))

        if isinstance(decider, str):
            method = getattr(request, decider, None)
            if callable(method):
                return bool(method(response, attempt))

        logger.debug(f"Ignoring retry decider {decider!r} for {type(request).__name__}")
        return None


def retry_call(
    func: Callable[[], T],
    *,
    handler: RetryHandler,
    request: Request,
    on_retry: Optional[Callable[[int, Union[T, BaseException]], None]] = None,
) -> T:
    """
    Call ``func`` until it succeeds or the handler stops retrying

    ``func`` may return a Response (retried per ``should_retry_response``)
    or raise (retried per ``should_retry_exception``). Once retries run out
    the last response is returned or the last exception re-raised.
    """
    retries = 0
    while True:
        try:
            result = func()
        except Exception as e:
            if not handler.should_retry_exception(request, e, retries):
                raise
            outcome: Union[T, BaseException] = e
        else:
            if not isinstance(result, Response):
                return result
            if not handler.should_retry_response(request, result, retries):
                return result
            outcome = result

        retries += 1
        if on_retry:
            on_retry(retries, outcome)
        handler.sleep(request, retries)


def status_codes(*codes: Union[int, Iterable[int]]) -> FrozenSet[int]:
    """Flatten codes and ranges into a status code set, e.g. ``status_codes(429, range(500, 600))``"""
    result = set()
    for code in codes:
        if isinstance(code, int):
            result.add(code)
        else:
            result.update(code)
    return frozenset(result)
