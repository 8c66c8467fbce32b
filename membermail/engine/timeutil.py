"""Timestamp normalization for loosely typed expiry meta."""

import re
from datetime import datetime, timezone
from typing import Any

from dateutil import parser as date_parser

from membermail.models.user import EXPIRY_META_KEYS

_INT_RE = re.compile(r"^-?\d+$")


def normalize_timestamp(value: Any) -> int:
    """Convert stored expiry values to epoch seconds.

    Accepts ints, floats, numeric strings, `YYYY-MM-DD[ HH:MM:SS]` and any
    other date string dateutil understands. Naive dates are read as UTC.
    Returns 0 when the value is empty, non-positive or unparseable.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return int(value) if value > 0 else 0
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        if _INT_RE.match(text):
            number = int(text)
            return number if number > 0 else 0
        try:
            parsed = date_parser.parse(text)
        except (ValueError, OverflowError):
            return 0
    else:
        return 0

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    stamp = int(parsed.timestamp())
    return stamp if stamp > 0 else 0


def read_expiry(directory, user_id: int) -> int:
    """First positive expiry found under the known meta key aliases."""
    for key in EXPIRY_META_KEYS:
        stamp = normalize_timestamp(directory.get_user_meta(user_id, key))
        if stamp > 0:
            return stamp
    return 0


def format_date(timestamp: int) -> str:
    if timestamp <= 0:
        return ""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%B %d, %Y")
