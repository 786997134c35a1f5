"""Tests for circuit state storage"""

from relay_resilience.resilience.circuit_store import CircuitRecord, CircuitState


class TestMemoryCircuitStore:
    """Test the in-memory circuit store"""

    def test_unknown_key_reads_closed(self, circuit_store):
        record = circuit_store.get_record("missing")

        assert record == CircuitRecord()
        assert circuit_store.get_state("missing") == CircuitState.CLOSED
        assert circuit_store.get_opened_at("missing") is None

    def test_transition_is_compare_and_set(self, circuit_store, clock):
        assert circuit_store.transition("k", CircuitState.OPEN, expected=CircuitState.CLOSED) is True
        assert circuit_store.transition("k", CircuitState.OPEN, expected=CircuitState.CLOSED) is False
        assert circuit_store.get_opened_at("k") == clock.now()

    def test_entering_half_open_clears_probation(self, circuit_store):
        circuit_store.transition("k", CircuitState.HALF_OPEN)
        circuit_store.try_acquire_half_open("k", 5)
        circuit_store.record_success("k")

        circuit_store.transition("k", CircuitState.OPEN, now=10.0)
        circuit_store.transition("k", CircuitState.HALF_OPEN)

        assert circuit_store.get_success_count("k") == 0
        assert circuit_store.get_half_open_attempts("k") == 0
        assert circuit_store.get_opened_at("k") == 10.0

    def test_closing_clears_everything(self, circuit_store):
        circuit_store.record_failure("k", 60)
        circuit_store.transition("k", CircuitState.OPEN)

        circuit_store.transition("k", CircuitState.CLOSED)

        assert circuit_store.get_record("k") == CircuitRecord()

    def test_half_open_capacity(self, circuit_store):
        assert circuit_store.try_acquire_half_open("k", 2) is True
        assert circuit_store.try_acquire_half_open("k", 2) is True
        assert circuit_store.try_acquire_half_open("k", 2) is False
        assert circuit_store.get_half_open_attempts("k") == 2

    def test_failure_window_pruning(self, circuit_store, clock):
        circuit_store.record_failure("k", None)
        clock.advance(100)

        # No window keeps every failure
        assert circuit_store.record_failure("k", None) == 2
        assert circuit_store.get_failure_count("k", 50) == 1
        assert circuit_store.record_failure("k", 50) == 2

    def test_snapshot_is_a_copy(self, circuit_store):
        circuit_store.record_failure("k", None)

        snapshot = circuit_store.get_record("k")
        snapshot.failures.append(0.0)

        assert circuit_store.get_failure_count("k") == 1

    def test_reset(self, circuit_store):
        circuit_store.record_failure("k", None)
        circuit_store.transition("k", CircuitState.OPEN)

        circuit_store.reset("k")

        assert circuit_store.get_state("k") == CircuitState.CLOSED
        assert circuit_store.get_failure_count("k") == 0
