"""Tests for configuration loading"""

import pytest

from relay_resilience.config import (
    Config,
    ConfiguredDependency,
    ResilienceSettings,
    get_config_path,
    load_config,
    save_config,
)
from relay_resilience.exceptions import ConfigurationError, RateLimitExceeded
from relay_resilience.resilience import (
    BackoffStrategy,
    CircuitBreakerConfig,
    RateLimitConfig,
    RetryConfig,
)

CONFIG_TOML = """
[rate_limit]
requests = 100
per_seconds = 60

[retry]
times = 4
delay = 250
status_codes = [429, 503]
exceptions = ["ConnectionError", "relay_resilience.exceptions.RateLimitExceeded"]

[dependencies.billing.rate_limit]
requests = 5
per_seconds = 1
key = "customer:{customer_id}"
backoff = "linear"

[dependencies.billing.circuit_breaker]
failure_threshold = 3
reset_timeout = 10.0
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "resilience.toml"
    path.write_text(CONFIG_TOML)
    return path


class TestLoadConfig:
    """Test reading TOML config files"""

    def test_missing_file_gives_empty_config(self, tmp_path):
        config = load_config(tmp_path / "absent.toml")

        assert config == Config()

    def test_global_sections(self, config_file):
        config = load_config(config_file)

        assert config.rate_limit == RateLimitConfig(requests=100, per_seconds=60)
        assert config.retry.times == 4
        assert config.retry.status_codes == frozenset({429, 503})
        assert config.retry.exceptions == (ConnectionError, RateLimitExceeded)
        assert config.circuit_breaker is None

    def test_dependency_sections(self, config_file):
        billing = load_config(config_file).for_dependency("billing")

        assert billing.rate_limit.requests == 5
        assert billing.rate_limit.key == "customer:{customer_id}"
        assert billing.rate_limit.backoff == BackoffStrategy.LINEAR
        assert billing.circuit_breaker.failure_threshold == 3
        # Falls back to the global section
        assert billing.retry.times == 4

    def test_unknown_dependency_uses_globals(self, config_file):
        other = load_config(config_file).for_dependency("shipping")

        assert other.rate_limit.requests == 100
        assert other.circuit_breaker is None

    def test_invalid_values_raise(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[rate_limit]\nrequests = 0\nper_seconds = 60\n")

        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_unknown_keys_raise(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[retry]\nattempts = 3\n")

        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_unknown_exception_raises(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text('[retry]\nexceptions = ["NoSuchError"]\n')

        with pytest.raises(ConfigurationError, match="NoSuchError"):
            load_config(path)

    def test_malformed_toml_raises(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[retry\n")

        with pytest.raises(ConfigurationError):
            load_config(path)


class TestSaveConfig:
    """Test writing config files"""

    def test_save_then_load(self, tmp_path):
        config = Config(
            retry=RetryConfig(times=2, status_codes={503}, exceptions=(TimeoutError,), decider="should_retry"),
            circuit_breaker=CircuitBreakerConfig(failure_threshold=4),
        )
        path = tmp_path / "nested" / "resilience.toml"

        save_config(config, path)
        loaded = load_config(path)

        assert loaded.retry == config.retry
        assert loaded.circuit_breaker == config.circuit_breaker
        assert loaded.rate_limit is None

    def test_to_dict_drops_unset_values(self):
        config = Config(rate_limit=RateLimitConfig(requests=1, per_seconds=2))

        assert config.to_dict() == {
            "rate_limit": {
                "requests": 1,
                "per_seconds": 2,
                "retry": False,
                "max_retries": 3,
                "backoff": "exponential",
                "backoff_base": 1000,
            }
        }


class TestSettings:
    """Test environment settings"""

    def test_config_path_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("RELAY_CONFIG_PATH", str(tmp_path / "custom.toml"))

        assert get_config_path() == tmp_path / "custom.toml"

    def test_default_config_path(self, monkeypatch):
        monkeypatch.delenv("RELAY_CONFIG_PATH", raising=False)

        assert get_config_path(ResilienceSettings(_env_file=None)).name == "resilience.toml"

    def test_redis_url_alias(self, monkeypatch):
        monkeypatch.delenv("RELAY_REDIS_URL", raising=False)
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")

        assert ResilienceSettings(_env_file=None).redis_url == "redis://cache:6379/0"


class TestConfiguredDependency:
    """Test dependencies backed by a config file"""

    def test_defaults_from_config(self, config_file):
        dependency = ConfiguredDependency("billing", load_config(config_file), base_url="https://billing.test")

        assert dependency.identity == "billing"
        assert dependency.base_url == "https://billing.test"
        assert dependency.rate_limit().requests == 5
        assert dependency.retry().delay == 250
        assert dependency.circuit_breaker().reset_timeout == 10.0
