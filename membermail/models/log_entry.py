"""Event log entry model and context value formatting.

Context values are a closed set of variants: str, int, float, bool and
nested string-keyed maps of the same. Anything else is dropped when an entry
is recorded. `format_context_value` has one formatter per variant.
"""

import re
from enum import Enum
from functools import singledispatch
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field

ContextValue = Union[str, int, float, bool, Dict[str, "ContextValue"]]

_KEY_RE = re.compile(r"[^a-z0-9_\-]")


class LogType(str, Enum):
    """Known event log types. Free-form types are accepted and uppercased."""
    SENT = "SENT"
    FAILED = "FAILED"
    QUEUE = "QUEUE"
    CRON = "CRON"
    VERIFY = "VERIFY"
    CONSENT = "CONSENT"
    TEMPLATE = "TEMPLATE"
    EVENT = "EVENT"
    INFO = "INFO"


class LogEntry(BaseModel):
    """One event log record."""

    timestamp: int = Field(..., description="Record time (epoch seconds)")
    type: str = Field(..., description="Uppercased log type")
    message: str = Field(..., description="Plain-text message")
    context: Dict[str, Any] = Field(default_factory=dict, description="Sanitized context map")


def sanitize_key(key: Any) -> str:
    """Lowercase alphanumerics, dashes and underscores only."""
    return _KEY_RE.sub("", str(key).lower())


def sanitize_context(value: Any) -> Optional[ContextValue]:
    """Coerce a value into a ContextValue, or None when it has no variant."""
    if isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, Enum):
        return sanitize_context(value.value)
    if isinstance(value, (list, tuple)):
        value = {str(index): item for index, item in enumerate(value)}
    if isinstance(value, dict):
        clean: Dict[str, ContextValue] = {}
        for key, item in value.items():
            clean_key = sanitize_key(key)
            clean_item = sanitize_context(item)
            if clean_key and clean_item is not None:
                clean[clean_key] = clean_item
        return clean
    return None


@singledispatch
def format_context_value(value) -> str:
    raise TypeError(f"Unsupported context value: {type(value).__name__}")


@format_context_value.register
def _(value: str) -> str:
    return value


@format_context_value.register
def _(value: bool) -> str:
    return "yes" if value else "no"


@format_context_value.register
def _(value: int) -> str:
    return str(value)


@format_context_value.register
def _(value: float) -> str:
    return f"{value:g}"


@format_context_value.register
def _(value: dict) -> str:
    parts = [f"{key}: {format_context_value(item)}" for key, item in value.items()]
    return "{" + ", ".join(parts) + "}"
