"""Per-key circuit state storage"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from threading import RLock
from typing import Dict, List, Optional

from ..clock import Clock, SystemClock


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class CircuitRecord:
    """Persisted state of one circuit"""
    state: CircuitState = CircuitState.CLOSED
    failures: List[float] = field(default_factory=list)  # failure timestamps
    success_count: int = 0
    opened_at: Optional[float] = None
    half_open_attempts: int = 0

    @property
    def failure_count(self) -> int:
        return len(self.failures)


class CircuitStore(ABC):
    """Abstract base class for circuit state backends.

    ``transition`` is a compare-and-set so that concurrent callers agree on
    which of them moved the circuit, and therefore which one runs the hooks.
    """

    @abstractmethod
    def get_record(self, key: str) -> CircuitRecord:
        """Snapshot of the circuit, a fresh closed record for unknown keys"""
        pass

    def get_state(self, key: str) -> CircuitState:
        return self.get_record(key).state

    def get_opened_at(self, key: str) -> Optional[float]:
        return self.get_record(key).opened_at

    def get_success_count(self, key: str) -> int:
        return self.get_record(key).success_count

    def get_half_open_attempts(self, key: str) -> int:
        return self.get_record(key).half_open_attempts

    @abstractmethod
    def get_failure_count(self, key: str, window: Optional[float] = None) -> int:
        """Failures recorded within the last ``window`` seconds (all if falsy)"""
        pass

    @abstractmethod
    def transition(
        self,
        key: str,
        new_state: CircuitState,
        expected: Optional[CircuitState] = None,
        now: Optional[float] = None,
    ) -> bool:
        """
        Move the circuit to ``new_state``

        Entering OPEN stamps ``opened_at`` and clears probation counters,
        entering HALF_OPEN clears probation counters, entering CLOSED clears
        everything.

        Returns:
            False without changing anything if ``expected`` is given and
            does not match the current state
        """
        pass

    @abstractmethod
    def record_failure(self, key: str, window: Optional[float]) -> int:
        """Record a failure and drop those older than ``window`` seconds (none if falsy).

        Returns the failure count within the window.
        """
        pass

    @abstractmethod
    def record_success(self, key: str) -> int:
        """Record a probation success and return the new success count"""
        pass

    @abstractmethod
    def try_acquire_half_open(self, key: str, capacity: int) -> bool:
        """Take one half-open trial slot if fewer than ``capacity`` are taken"""
        pass

    @abstractmethod
    def reset(self, key: str) -> None:
        pass


class MemoryCircuitStore(CircuitStore):
    """In-memory circuit store"""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self._circuits: Dict[str, CircuitRecord] = {}
        self._lock = RLock()

    def _circuit(self, key: str) -> CircuitRecord:
        """Get or lazily create the record (must be called with lock held)"""
        circuit = self._circuits.get(key)
        if circuit is None:
            circuit = CircuitRecord()
            self._circuits[key] = circuit
        return circuit

    def get_record(self, key: str) -> CircuitRecord:
        with self._lock:
            circuit = self._circuits.get(key)
            if circuit is None:
                return CircuitRecord()
            return replace(circuit, failures=list(circuit.failures))

    def get_failure_count(self, key: str, window: Optional[float] = None) -> int:
        with self._lock:
            circuit = self._circuits.get(key)
            if circuit is None:
                return 0
            if not window:
                return circuit.failure_count
            cutoff = self.clock.now() - window
            return sum(1 for ts in circuit.failures if ts > cutoff)

    def transition(
        self,
        key: str,
        new_state: CircuitState,
        expected: Optional[CircuitState] = None,
        now: Optional[float] = None,
    ) -> bool:
        with self._lock:
            circuit = self._circuit(key)
            if expected is not None and circuit.state != expected:
                return False

            if new_state == CircuitState.CLOSED:
                self._circuits[key] = CircuitRecord()
                return True

            circuit.state = new_state
            circuit.success_count = 0
            circuit.half_open_attempts = 0
            if new_state == CircuitState.OPEN:
                circuit.opened_at = now if now is not None else self.clock.now()
            return True

    def record_failure(self, key: str, window: Optional[float]) -> int:
        with self._lock:
            circuit = self._circuit(key)
            now = self.clock.now()
            circuit.failures.append(now)
            if window:
                circuit.failures = [ts for ts in circuit.failures if ts > now - window]
            return circuit.failure_count

    def record_success(self, key: str) -> int:
        with self._lock:
            circuit = self._circuit(key)
            circuit.success_count += 1
            return circuit.success_count

    def try_acquire_half_open(self, key: str, capacity: int) -> bool:
        with self._lock:
            circuit = self._circuit(key)
            if circuit.half_open_attempts >= capacity:
                return False
            circuit.half_open_attempts += 1
            return True

    def reset(self, key: str) -> None:
        with self._lock:
            self._circuits[key] = CircuitRecord()
