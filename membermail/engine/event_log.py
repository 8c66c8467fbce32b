"""Bounded event log for email activity.

Entries live in the key/value store as a single list capped at
`LOG_CAPACITY`; the oldest entries are evicted first. Every entry is also
mirrored to the standard `logging` logger of this module.
"""

import html
import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import bleach

from membermail.models.constants import LOG_CAPACITY, LOG_OPTION_KEY
from membermail.models.log_entry import (
    LogEntry,
    LogType,
    format_context_value,
    sanitize_context,
)

logger = logging.getLogger(__name__)

# Context keys grouped by summarize_context().
SUMMARY_KEYS = ("template", "delivery_mode", "status")


def _strip_markup(message: Any) -> str:
    text = bleach.clean(str(message), tags=set(), attributes={}, strip=True, strip_comments=True)
    return html.unescape(text).strip()


class EventLog:
    """Append-only, capacity-bounded event log."""

    def __init__(self, store, clock, capacity: int = LOG_CAPACITY, option_key: str = LOG_OPTION_KEY):
        self.store = store
        self.clock = clock
        self.capacity = capacity
        self.option_key = option_key

    def add(self, message: str, log_type: str = LogType.INFO.value, context: Optional[Dict[str, Any]] = None) -> LogEntry:
        """Record an entry and evict the oldest ones beyond capacity."""
        clean_context = sanitize_context(context or {})
        entry = LogEntry(
            timestamp=self.clock.now(),
            type=str(getattr(log_type, "value", log_type) or LogType.INFO.value).upper(),
            message=_strip_markup(message),
            context=clean_context if isinstance(clean_context, dict) else {},
        )

        entries = self.store.get(self.option_key, [])
        if not isinstance(entries, list):
            entries = []
        entries.append(entry.model_dump())
        if len(entries) > self.capacity:
            entries = entries[-self.capacity:]
        self.store.set(self.option_key, entries)

        level = logging.WARNING if entry.type == LogType.FAILED.value else logging.INFO
        logger.log(level, self.format_entry(entry))
        return entry

    def get(self, limit: Optional[int] = None) -> List[LogEntry]:
        """Return entries newest first."""
        raw = self.store.get(self.option_key, [])
        if not isinstance(raw, list):
            return []
        entries = []
        for item in reversed(raw):
            try:
                entries.append(LogEntry.model_validate(item))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed log entry: {type(e).__name__}: {str(e)}")
        if limit is not None:
            entries = entries[:limit]
        return entries

    def get_stats(self) -> Dict[str, int]:
        """Count entries per type, plus a `TOTAL`."""
        entries = self.get()
        stats = dict(Counter(entry.type for entry in entries))
        stats["TOTAL"] = len(entries)
        return stats

    def summarize_context(self) -> Dict[str, Dict[str, int]]:
        """Count entries by template, delivery mode, status and log type."""
        summary: Dict[str, Counter] = {key: Counter() for key in SUMMARY_KEYS}
        summary["log_type"] = Counter()
        for entry in self.get():
            summary["log_type"][entry.type] += 1
            for key in SUMMARY_KEYS:
                value = entry.context.get(key)
                if isinstance(value, (str, int, float)) and not isinstance(value, bool) and value != "":
                    summary[key][str(value)] += 1
        return {key: dict(counts) for key, counts in summary.items()}

    def clear(self) -> None:
        self.store.delete(self.option_key)

    @staticmethod
    def format_entry(entry: LogEntry) -> str:
        """One-line human readable rendering of an entry."""
        when = datetime.fromtimestamp(entry.timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        line = f"[{when}] {entry.type}: {entry.message}"
        if entry.context:
            line += " " + format_context_value(entry.context)
        return line
