"""Scope key and configuration resolution shared by all resilience features"""

import re
from enum import Enum
from typing import Any, Optional, TypeVar

from .contracts import Dependency, Request

T = TypeVar("T")

PLACEHOLDER = re.compile(r"\{(\w+)\}")


def _stringify(value: Any) -> Optional[str]:
    """String form of a template value, or None when it can't be substituted"""
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (str, int, float, bool)):
        return str(value)
    # Objects opt in by defining their own __str__
    if type(value).__str__ is not object.__str__:
        return str(value)
    return None


def resolve_key_template(template: str, request: Request) -> str:
    """Substitute ``{field}`` tokens with public attributes of the request.

    Unresolvable tokens (missing, private, None or non-scalar values) are
    left verbatim. Two requests sharing an unresolved template therefore
    share a key.
    """
    def replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name.startswith("_"):
            return match.group(0)

        try:
            value = getattr(request, name)
        except AttributeError:
            return match.group(0)

        if callable(value):
            return match.group(0)

        text = _stringify(value)
        return text if text is not None else match.group(0)

    return PLACEHOLDER.sub(replace, template)


def resolve_scope_key(
    dependency: Dependency,
    request: Request,
    template: Optional[str] = None,
) -> str:
    """Key template resolved against the request, else the dependency identity"""
    if template is not None:
        return resolve_key_template(template, request)
    return dependency.identity


def resolve_config(declared: Optional[T], default: Optional[T]) -> Optional[T]:
    """Call-site declaration wins over the dependency default, else disabled"""
    if declared is not None:
        return declared
    return default
