"""Configuration loader"""

import builtins
import importlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Type

import toml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.contracts import Dependency
from ..exceptions import ConfigurationError
from ..resilience.circuit_breaker import CircuitBreakerConfig
from ..resilience.rate_limit_config import BackoffStrategy, RateLimitConfig
from ..resilience.retry import RetryConfig
from .settings import get_config_path

# Try to use tomllib (Python 3.11+) for reading, fallback to toml
try:
    import tomllib
    HAS_TOMLLIB = True
except ImportError:
    HAS_TOMLLIB = False


def resolve_exception(name: str) -> Type[BaseException]:
    """Exception class from a builtin name or a dotted path"""
    if "." not in name:
        exc = getattr(builtins, name, None)
    else:
        module_name, _, attr = name.rpartition(".")
        try:
            exc = getattr(importlib.import_module(module_name), attr, None)
        except ImportError:
            exc = None

    if not (isinstance(exc, type) and issubclass(exc, BaseException)):
        raise ConfigurationError(f"Unknown exception type: {name}")
    return exc


def exception_name(exc: Type[BaseException]) -> str:
    if exc.__module__ == "builtins":
        return exc.__qualname__
    return f"{exc.__module__}.{exc.__qualname__}"


class RateLimitSection(BaseModel):
    """[rate_limit] table"""
    model_config = ConfigDict(extra="forbid")

    requests: int = Field(ge=1)
    per_seconds: float = Field(gt=0)
    key: Optional[str] = None
    retry: bool = False
    max_retries: int = Field(default=3, ge=0)
    backoff: str = BackoffStrategy.EXPONENTIAL.value
    backoff_base: int = Field(default=1_000, ge=0)

    def to_config(self) -> RateLimitConfig:
        return RateLimitConfig(**self.model_dump())


class RetrySection(BaseModel):
    """[retry] table"""
    model_config = ConfigDict(extra="forbid")

    times: int = Field(default=3, ge=0)
    delay: int = Field(default=100, ge=0)
    multiplier: float = Field(default=2.0, gt=0)
    max_delay: int = Field(default=30_000, ge=0)
    status_codes: List[int] = Field(default_factory=list)
    exceptions: List[str] = Field(default_factory=list)
    decider: Optional[str] = None  # request method name

    def to_config(self) -> RetryConfig:
        return RetryConfig(
            times=self.times,
            delay=self.delay,
            multiplier=self.multiplier,
            max_delay=self.max_delay,
            status_codes=frozenset(self.status_codes),
            exceptions=tuple(resolve_exception(name) for name in self.exceptions),
            decider=self.decider,
        )


class CircuitBreakerSection(BaseModel):
    """[circuit_breaker] table"""
    model_config = ConfigDict(extra="forbid")

    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout: float = Field(default=30.0, ge=0)
    half_open_requests: int = Field(default=3, ge=1)
    failure_window: float = Field(default=60.0, ge=0)
    success_threshold: int = Field(default=1, ge=1)
    key: Optional[str] = None

    def to_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(**self.model_dump())


class DependencySection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    rate_limit: Optional[RateLimitSection] = None
    retry: Optional[RetrySection] = None
    circuit_breaker: Optional[CircuitBreakerSection] = None


class ConfigFile(BaseModel):
    """Whole-file schema"""
    model_config = ConfigDict(extra="forbid")

    rate_limit: Optional[RateLimitSection] = None
    retry: Optional[RetrySection] = None
    circuit_breaker: Optional[CircuitBreakerSection] = None
    dependencies: Dict[str, DependencySection] = Field(default_factory=dict)


@dataclass
class DependencyConfig:
    """Resolved defaults for one dependency"""
    rate_limit: Optional[RateLimitConfig] = None
    retry: Optional[RetryConfig] = None
    circuit_breaker: Optional[CircuitBreakerConfig] = None


@dataclass
class Config:
    """Main configuration: global defaults plus per-dependency overrides"""
    rate_limit: Optional[RateLimitConfig] = None
    retry: Optional[RetryConfig] = None
    circuit_breaker: Optional[CircuitBreakerConfig] = None
    dependencies: Dict[str, DependencyConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Create Config from dictionary"""
        try:
            parsed = ConfigFile.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid resilience configuration: {e}") from e

        def convert(section):
            return section.to_config() if section is not None else None

        config = cls(
            rate_limit=convert(parsed.rate_limit),
            retry=convert(parsed.retry),
            circuit_breaker=convert(parsed.circuit_breaker),
        )

        for identity, dependency in parsed.dependencies.items():
            config.dependencies[identity] = DependencyConfig(
                rate_limit=convert(dependency.rate_limit),
                retry=convert(dependency.retry),
                circuit_breaker=convert(dependency.circuit_breaker),
            )

        return config

    def to_dict(self) -> dict:
        """Convert Config to dictionary"""
        result: Dict[str, Any] = _sections(self.rate_limit, self.retry, self.circuit_breaker)

        dependencies = {}
        for identity, dependency in self.dependencies.items():
            sections = _sections(dependency.rate_limit, dependency.retry, dependency.circuit_breaker)
            if sections:
                dependencies[identity] = sections
        if dependencies:
            result["dependencies"] = dependencies

        return result

    def for_dependency(self, identity: str) -> DependencyConfig:
        """Defaults for a dependency, its own sections winning over global ones"""
        own = self.dependencies.get(identity, DependencyConfig())
        return DependencyConfig(
            rate_limit=own.rate_limit or self.rate_limit,
            retry=own.retry or self.retry,
            circuit_breaker=own.circuit_breaker or self.circuit_breaker,
        )


def _drop_none(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def _sections(
    rate_limit: Optional[RateLimitConfig],
    retry: Optional[RetryConfig],
    circuit_breaker: Optional[CircuitBreakerConfig],
) -> Dict[str, Any]:
    result: Dict[str, Any] = {}

    if rate_limit is not None:
        backoff = rate_limit.backoff
        result["rate_limit"] = _drop_none({
            "requests": rate_limit.requests,
            "per_seconds": rate_limit.per_seconds,
            "key": rate_limit.key,
            "retry": rate_limit.retry,
            "max_retries": rate_limit.max_retries,
            # Custom BackoffPolicy objects cannot be written to a file
            "backoff": backoff.value if isinstance(backoff, BackoffStrategy) else (
                backoff if isinstance(backoff, str) else None
            ),
            "backoff_base": rate_limit.backoff_base,
        })

    if retry is not None:
        result["retry"] = _drop_none({
            "times": retry.times,
            "delay": retry.delay,
            "multiplier": retry.multiplier,
            "max_delay": retry.max_delay,
            "status_codes": sorted(retry.status_codes),
            "exceptions": [exception_name(exc) for exc in retry.exceptions],
            "decider": retry.decider if isinstance(retry.decider, str) else None,
        })

    if circuit_breaker is not None:
        result["circuit_breaker"] = _drop_none({
            "failure_threshold": circuit_breaker.failure_threshold,
            "reset_timeout": circuit_breaker.reset_timeout,
            "half_open_requests": circuit_breaker.half_open_requests,
            "failure_window": circuit_breaker.failure_window,
            "success_threshold": circuit_breaker.success_threshold,
            "key": circuit_breaker.key,
        })

    return result


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from file, an empty Config if it doesn't exist"""
    if config_path is None:
        config_path = get_config_path()

    config_path = Path(config_path).expanduser()

    if not config_path.exists():
        return Config()

    try:
        if HAS_TOMLLIB:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        else:
            with open(config_path, "r") as f:
                data = toml.load(f)
    except (ValueError, toml.TomlDecodeError) as e:
        # tomllib.TOMLDecodeError is a ValueError
        raise ConfigurationError(f"Cannot parse {config_path}: {e}") from e

    return Config.from_dict(data)


def save_config(config: Config, config_path: Optional[Path] = None) -> None:
    """Save configuration to file"""
    if config_path is None:
        config_path = get_config_path()

    config_path = Path(config_path).expanduser()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        toml.dump(config.to_dict(), f)


class ConfiguredDependency(Dependency):
    """Dependency whose defaults come from a loaded Config"""

    def __init__(self, identity: str, config: Config, base_url: str = ""):
        self._identity = identity
        self._defaults = config.for_dependency(identity)
        self.base_url = base_url

    @property
    def identity(self) -> str:
        return self._identity

    def rate_limit(self) -> Optional[RateLimitConfig]:
        return self._defaults.rate_limit

    def retry(self) -> Optional[RetryConfig]:
        return self._defaults.retry

    def circuit_breaker(self) -> Optional[CircuitBreakerConfig]:
        return self._defaults.circuit_breaker
