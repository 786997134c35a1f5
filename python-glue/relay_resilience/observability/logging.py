"""Structured logging setup with dependency, attempt and correlation context"""

import logging
import json
import os
import sys
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from contextvars import ContextVar

# Context variables for the call currently flowing through the pipeline
dependency_var: ContextVar[Optional[str]] = ContextVar('dependency', default=None)
attempt_var: ContextVar[Optional[int]] = ContextVar('attempt', default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)


def get_dependency() -> Optional[str]:
    """Get the identity of the dependency being called"""
    return dependency_var.get()


def set_dependency(identity: Optional[str]) -> None:
    dependency_var.set(identity)


def get_attempt() -> Optional[int]:
    """Get the current attempt number"""
    return attempt_var.get()


def set_attempt(attempt: Optional[int]) -> None:
    attempt_var.set(attempt)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str]) -> None:
    correlation_id_var.set(correlation_id)


SENSITIVE_KEYS = (
    "password", "api_key", "token", "secret", "authorization",
    "x-api-key", "bearer", "credential", "access_token", "refresh_token",
)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging with call context"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        dependency = get_dependency()
        if dependency:
            log_data["dependency"] = dependency

        attempt = get_attempt()
        if attempt is not None:
            log_data["attempt"] = attempt

        correlation_id = get_correlation_id()
        if correlation_id:
            log_data["correlation_id"] = correlation_id

        # Fields passed as logger.info(..., extra={"extra": {...}})
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            log_data.update(record.extra)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data = mask_sensitive_data(log_data)

        return json.dumps(log_data, default=str)


def mask_sensitive_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Mask values whose key looks like a credential"""
    masked_data = {}
    for key, value in data.items():
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in SENSITIVE_KEYS):
            if isinstance(value, str) and len(value) > 8:
                masked_data[key] = value[:4] + "***" + value[-4:]
            else:
                masked_data[key] = "***"
        elif isinstance(value, dict):
            masked_data[key] = mask_sensitive_data(value)
        else:
            masked_data[key] = value

    return masked_data


class ResilienceContextFilter(logging.Filter):
    """Filter to stamp call context onto log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.dependency = get_dependency() or "N/A"
        attempt = get_attempt()
        record.attempt = attempt if attempt is not None else "-"
        record.correlation_id = get_correlation_id() or "N/A"
        return True


def setup_logging(
    level: str = "INFO",
    json_output: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """Setup structured logging"""
    log_level_str = os.getenv("LOG_LEVEL", level).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    handlers = []
    context_filter = ResilienceContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    if json_output or os.getenv("LOG_FORMAT", "").lower() == "json":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - "
                "[%(dependency)s #%(attempt)s] - %(message)s"
            )
        )
    console_handler.addFilter(context_filter)
    handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(context_filter)
        handlers.append(file_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,
    )

    # Transport chatter stays quiet unless explicitly requested
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance"""
    return logging.getLogger(name)
