"""Observability: structured logging"""

from .logging import (
    setup_logging,
    get_logger,
    JSONFormatter,
    ResilienceContextFilter,
    set_dependency,
    set_attempt,
    set_correlation_id,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "JSONFormatter",
    "ResilienceContextFilter",
    "set_dependency",
    "set_attempt",
    "set_correlation_id",
]
