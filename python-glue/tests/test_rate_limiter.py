"""Tests for the client-side rate limiter"""

import pytest

from relay_resilience.exceptions import RateLimitExceeded
from relay_resilience.resilience import (
    BackoffPolicy,
    BackoffStrategy,
    RateLimitConfig,
    RateLimiter,
)


class TestRateLimitConfig:
    """Test config validation"""

    def test_defaults(self):
        config = RateLimitConfig(requests=10, per_seconds=1)
        assert config.key is None
        assert config.retry is False
        assert config.max_retries == 3
        assert config.backoff == BackoffStrategy.EXPONENTIAL
        assert config.backoff_base == 1000

    @pytest.mark.parametrize("kwargs", [
        {"requests": 0, "per_seconds": 1},
        {"requests": 1, "per_seconds": 0},
        {"requests": 1, "per_seconds": 1, "max_retries": -1},
    ])
    def test_rejects_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            RateLimitConfig(**kwargs)


class TestRateLimiterCheck:
    """Test admission within a fixed window"""

    def test_allows_up_to_limit_then_refuses(self, counter_store, clock, dependency, request_factory):
        limiter = RateLimiter(counter_store, clock=clock)
        request = request_factory(rate_limit=RateLimitConfig(requests=2, per_seconds=60))

        limiter.check(dependency, request)
        limiter.check(dependency, request)

        with pytest.raises(RateLimitExceeded) as exc_info:
            limiter.check(dependency, request)

        error = exc_info.value
        assert error.limit == 2
        assert error.remaining == 0
        assert error.retry_after == 1.0
        assert error.is_client_side

    def test_refused_attempts_still_count(self, counter_store, clock, dependency, request_factory):
        limiter = RateLimiter(counter_store, clock=clock)
        request = request_factory(rate_limit=RateLimitConfig(requests=2, per_seconds=60))

        for _ in range(2):
            limiter.check(dependency, request)
        for _ in range(3):
            with pytest.raises(RateLimitExceeded):
                limiter.check(dependency, request)

        assert counter_store.get_count("billing") == 5
        state = limiter.get_state(dependency, request)
        assert state.remaining == 0

    def test_backoff_grows_with_overage(self, counter_store, clock, dependency, request_factory):
        limiter = RateLimiter(counter_store, clock=clock)
        request = request_factory(rate_limit=RateLimitConfig(requests=1, per_seconds=60))

        limiter.check(dependency, request)
        delays = []
        for _ in range(3):
            with pytest.raises(RateLimitExceeded) as exc_info:
                limiter.check(dependency, request)
            delays.append(exc_info.value.retry_after)

        assert delays == [1.0, 2.0, 4.0]

    def test_window_resets(self, counter_store, clock, dependency, request_factory):
        limiter = RateLimiter(counter_store, clock=clock)
        request = request_factory(rate_limit=RateLimitConfig(requests=2, per_seconds=60))

        limiter.check(dependency, request)
        limiter.check(dependency, request)
        clock.advance(59)
        with pytest.raises(RateLimitExceeded):
            limiter.check(dependency, request)

        clock.advance(1)
        limiter.check(dependency, request)
        assert limiter.get_state(dependency, request).remaining == 1

    def test_no_config_never_limits(self, counter_store, clock, dependency, request_factory):
        limiter = RateLimiter(counter_store, clock=clock)
        request = request_factory()

        for _ in range(100):
            limiter.check(dependency, request)

        assert limiter.get_state(dependency, request) is None
        assert counter_store.get_count("billing") == 0

    def test_sustained_overage_waits_at_most_until_reset(self, counter_store, clock, dependency, request_factory):
        limiter = RateLimiter(counter_store, clock=clock)
        request = request_factory(rate_limit=RateLimitConfig(requests=1, per_seconds=3600))

        limiter.check(dependency, request)
        for _ in range(1200):
            with pytest.raises(RateLimitExceeded) as exc_info:
                limiter.check(dependency, request)
            assert 0 < exc_info.value.retry_after <= 3600

        assert counter_store.get_count("billing") == 1201

    def test_key_template_scopes_counters(self, counter_store, clock, dependency, request_factory):
        limiter = RateLimiter(counter_store, clock=clock)
        config = RateLimitConfig(requests=1, per_seconds=60, key="customer:{customer_id}")

        limiter.check(dependency, request_factory("alice", rate_limit=config))
        limiter.check(dependency, request_factory("bob", rate_limit=config))

        with pytest.raises(RateLimitExceeded):
            limiter.check(dependency, request_factory("alice", rate_limit=config))

        assert counter_store.get_count("customer:alice") == 2
        assert counter_store.get_count("customer:bob") == 1

    def test_default_key_is_dependency_identity(self, counter_store, clock, dependency, request_factory):
        limiter = RateLimiter(counter_store, clock=clock)
        request = request_factory(rate_limit=RateLimitConfig(requests=5, per_seconds=60))

        assert limiter.resolve_key(dependency, request) == "billing"


class TestRateLimiterConfigResolution:
    """Test per-call configuration over dependency defaults"""

    def test_request_config_overrides_default(self, counter_store, clock, dependency, request_factory):
        limiter = RateLimiter(
            counter_store,
            default_config=RateLimitConfig(requests=100, per_seconds=60),
            clock=clock,
        )
        request = request_factory(rate_limit=RateLimitConfig(requests=1, per_seconds=60))

        limiter.check(dependency, request)
        with pytest.raises(RateLimitExceeded) as exc_info:
            limiter.check(dependency, request)
        assert exc_info.value.limit == 1

    def test_default_applies_without_declaration(self, counter_store, clock, dependency, request_factory):
        default = RateLimitConfig(requests=3, per_seconds=10)
        limiter = RateLimiter(counter_store, default_config=default, clock=clock)

        assert limiter.get_config(request_factory()) is default


class TestBackoff:
    """Test backoff curves"""

    def _limiter(self, clock):
        return RateLimiter(clock=clock)

    def test_exponential(self, clock, request_factory):
        config = RateLimitConfig(requests=1, per_seconds=1, backoff=BackoffStrategy.EXPONENTIAL)
        limiter = self._limiter(clock)
        request = request_factory()

        assert [limiter.calculate_backoff(request, config, n) for n in (1, 2, 3)] == [1000, 2000, 4000]

    def test_exponential_stops_doubling(self, clock, request_factory):
        config = RateLimitConfig(requests=1, per_seconds=1)
        limiter = self._limiter(clock)
        request = request_factory()

        assert limiter.calculate_backoff(request, config, 2000) == 1000 * 2 ** 32
        assert limiter.calculate_backoff(request, config, 2000, retry_after_hint=12.5) == 12_500

    def test_linear(self, clock, request_factory):
        config = RateLimitConfig(requests=1, per_seconds=1, backoff="linear")
        limiter = self._limiter(clock)
        request = request_factory()

        assert [limiter.calculate_backoff(request, config, n) for n in (1, 2, 3)] == [1000, 2000, 3000]

    def test_fixed_and_unknown(self, clock, request_factory):
        limiter = self._limiter(clock)
        request = request_factory()
        fixed = RateLimitConfig(requests=1, per_seconds=1, backoff=BackoffStrategy.FIXED, backoff_base=500)
        unknown = RateLimitConfig(requests=1, per_seconds=1, backoff="jittered")

        assert limiter.calculate_backoff(request, fixed, 4) == 500
        assert limiter.calculate_backoff(request, unknown, 3) == 1000

    def test_custom_policy_receives_hint(self, counter_store, clock, dependency, request_factory):
        calls = []

        class HintPolicy(BackoffPolicy):
            def calculate_delay(self, request, attempt, retry_after=0):
                calls.append((attempt, retry_after))
                return retry_after * 1000

        limiter = RateLimiter(counter_store, clock=clock)
        request = request_factory(
            rate_limit=RateLimitConfig(requests=1, per_seconds=60, backoff=HintPolicy)
        )

        limiter.check(dependency, request)
        clock.advance(10.5)
        with pytest.raises(RateLimitExceeded) as exc_info:
            limiter.check(dependency, request)

        # 49.5s left in the window, rounded up
        assert calls == [(1, 50)]
        assert exc_info.value.retry_after == 50.0


class TestRateLimitRetryConfig:
    """Test the retry settings derived from a rate limit"""

    def test_disabled_without_retry_flag(self, clock, request_factory):
        limiter = RateLimiter(clock=clock)
        request = request_factory(rate_limit=RateLimitConfig(requests=1, per_seconds=1))

        assert limiter.get_retry_config(request) is None

    def test_exponential_retry_config(self, clock, request_factory):
        limiter = RateLimiter(clock=clock)
        request = request_factory(
            rate_limit=RateLimitConfig(requests=1, per_seconds=1, retry=True, max_retries=5, backoff_base=250)
        )

        retry = limiter.get_retry_config(request)
        assert retry.times == 5
        assert retry.delay == 250
        assert retry.multiplier == 2.0
        assert retry.exceptions == (RateLimitExceeded,)

    def test_linear_retry_config_has_flat_multiplier(self, clock, request_factory):
        limiter = RateLimiter(clock=clock)
        request = request_factory(
            rate_limit=RateLimitConfig(requests=1, per_seconds=1, retry=True, backoff=BackoffStrategy.LINEAR)
        )

        assert limiter.get_retry_config(request).multiplier == 1.0
