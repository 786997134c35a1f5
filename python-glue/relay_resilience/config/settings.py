"""Environment-driven settings"""

from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..observability import setup_logging


class ResilienceSettings(BaseSettings):
    """Process settings read from RELAY_* environment variables (or .env)"""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        extra="ignore",
    )

    config_path: Optional[Path] = None
    redis_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("RELAY_REDIS_URL", "REDIS_URL"),
    )
    log_level: str = "INFO"
    log_json: bool = True


def get_config_path(settings: Optional[ResilienceSettings] = None) -> Path:
    """Get path to config file"""
    settings = settings or ResilienceSettings()
    if settings.config_path is not None:
        return Path(settings.config_path).expanduser()
    return Path.home() / ".relay" / "resilience.toml"


def configure_logging(
    settings: Optional[ResilienceSettings] = None,
    log_file: Optional[str] = None,
) -> None:
    """Set up logging from RELAY_LOG_LEVEL / RELAY_LOG_JSON"""
    settings = settings or ResilienceSettings()
    setup_logging(level=settings.log_level, json_output=settings.log_json, log_file=log_file)
