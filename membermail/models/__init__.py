"""Data models for membermail."""

from membermail.models.user import User, MetaKey, EXPIRY_META_KEYS
from membermail.models.queue_job import QueueJob, RateWindow
from membermail.models.log_entry import LogEntry, LogType, ContextValue
from membermail.models.tokens import TokenRecord

__all__ = [
    "User",
    "MetaKey",
    "EXPIRY_META_KEYS",
    "QueueJob",
    "RateWindow",
    "LogEntry",
    "LogType",
    "ContextValue",
    "TokenRecord",
]
