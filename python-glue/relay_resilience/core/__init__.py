"""Core contracts: requests, dependencies, responses, transports and key resolution"""

from .contracts import (
    Dependency,
    HttpxTransport,
    RateLimitInfo,
    Request,
    Response,
    Transport,
)
from .keys import resolve_config, resolve_key_template, resolve_scope_key

__all__ = [
    "Dependency",
    "HttpxTransport",
    "RateLimitInfo",
    "Request",
    "Response",
    "Transport",
    "resolve_config",
    "resolve_key_template",
    "resolve_scope_key",
]
