"""Notification engine for membermail."""

from membermail.engine.event_log import EventLog
from membermail.engine.hooks import HookRegistry, EventBus, normalize_hook_id
from membermail.engine.templates import TemplateStore, normalize_slug
from membermail.engine.delivery_queue import DeliveryQueue
from membermail.engine.consent import Consent
from membermail.engine.sender import EmailSender
from membermail.engine.verification import VerificationProtocol, VerifyOutcome, ResendResult
from membermail.engine.lifecycle_scanner import LifecycleScanner, ScanResult
from membermail.engine.timeutil import normalize_timestamp

__all__ = [
    "EventLog",
    "HookRegistry",
    "EventBus",
    "normalize_hook_id",
    "TemplateStore",
    "normalize_slug",
    "DeliveryQueue",
    "Consent",
    "EmailSender",
    "VerificationProtocol",
    "VerifyOutcome",
    "ResendResult",
    "LifecycleScanner",
    "ScanResult",
    "normalize_timestamp",
]
