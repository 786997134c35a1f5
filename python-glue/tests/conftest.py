"""Pytest configuration and fixtures"""

from typing import Callable, List, Optional, Union

import pytest

from relay_resilience.clock import ManualClock
from relay_resilience.core.contracts import Dependency, Request, Response, Transport
from relay_resilience.resilience.circuit_store import MemoryCircuitStore
from relay_resilience.resilience.counter_store import MemoryCounterStore


class Billing(Dependency):
    """Dependency with no defaults of its own"""
    base_url = "https://billing.test"

    @property
    def identity(self) -> str:
        return "billing"


class GetInvoice(Request):
    endpoint = "/invoices"

    def __init__(self, customer_id: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self.customer_id = customer_id


Outcome = Union[Response, BaseException, Callable[[], Response]]


class ScriptedTransport(Transport):
    """Transport that replays a fixed list of responses and errors"""

    def __init__(self, outcomes: List[Outcome]):
        self.outcomes = list(outcomes)
        self.sent: List[Request] = []
        self.closed = False

    def send(self, dependency: Dependency, request: Request) -> Response:
        self.sent.append(request)
        if not self.outcomes:
            raise AssertionError("transport called more times than scripted")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome()
        return outcome

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock():
    """Manual clock starting at a fixed epoch"""
    return ManualClock(start=1_000.0)


@pytest.fixture
def counter_store(clock):
    return MemoryCounterStore(clock)


@pytest.fixture
def circuit_store(clock):
    return MemoryCircuitStore(clock)


@pytest.fixture
def dependency():
    return Billing()


@pytest.fixture
def request_factory():
    """Build GetInvoice requests"""
    def factory(customer_id: Optional[str] = None, **kwargs) -> GetInvoice:
        return GetInvoice(customer_id=customer_id, **kwargs)
    return factory


@pytest.fixture
def scripted_transport():
    return ScriptedTransport
