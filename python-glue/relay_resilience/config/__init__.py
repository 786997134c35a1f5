"""Configuration management"""

from .loader import (
    Config,
    ConfiguredDependency,
    DependencyConfig,
    load_config,
    save_config,
)
from .settings import ResilienceSettings, configure_logging, get_config_path

__all__ = [
    "Config",
    "ConfiguredDependency",
    "DependencyConfig",
    "ResilienceSettings",
    "configure_logging",
    "get_config_path",
    "load_config",
    "save_config",
]
