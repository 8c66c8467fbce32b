"""Lifecycle scan: decides which expiry, reminder and comeback emails are due.

Each one-time email is guarded by a boolean flag in user meta that is set
once and never cleared here, so repeated scans over unchanged state queue
nothing new. A run queues at most `max_queue_per_run` jobs; users past the
cap keep their flags unset and are picked up by the next run. One user's
failure is logged and skipped; it never aborts the scan.
"""

import logging
import math
from typing import Dict, List, Optional, Tuple

from membermail.engine.sender import DELIVERY_DIRECT
from membermail.engine.timeutil import read_expiry
from membermail.models.constants import (
    COMEBACK_AFTER_SECONDS,
    DAY_IN_SECONDS,
    DIRECT_REMINDER_WINDOW_SECONDS,
    EVENT_SUBSCRIPTION_EXPIRED,
    EVENT_TRIAL_EXPIRED,
    EXPIRY_SCAN_WINDOW_SECONDS,
    HOOK_SEND_PLAN_EXPIRED,
    HOOK_SEND_PLAN_REMINDER,
    HOOK_SEND_VERIFY_REMINDER,
    VERIFY_REMINDER_DELAY_SECONDS,
    VERIFY_REMINDER_INTERVAL_SECONDS,
)
from membermail.models.log_entry import LogType
from membermail.models.user import EXPIRY_META_KEYS, MetaKey, User

logger = logging.getLogger(__name__)

TRIAL_STATUS = "trial"


class ScanResult:
    """Aggregate counters for one scan run."""

    def __init__(self):
        self.candidates = 0
        self.expired_queued = 0
        self.reminders_queued = 0
        self.direct_reminders = 0
        self.comebacks = 0
        self.events_emitted = 0
        self.verify_reminders = 0
        self.skipped = 0
        self.deferred = 0
        self.failed = 0

    @property
    def queued(self) -> int:
        return self.expired_queued + self.reminders_queued + self.verify_reminders

    def to_dict(self) -> Dict[str, int]:
        return dict(vars(self))


class ExpiredUser:
    """A user flagged as expired during the current run."""

    def __init__(self, user_id: int, plan_id: str, expired_at: int, is_trial: bool):
        self.user_id = user_id
        self.plan_id = plan_id
        self.expired_at = expired_at
        self.is_trial = is_trial


class LifecycleScanner:
    """Periodic decision engine over the member population."""

    def __init__(self, directory, queue, sender, consent, event_log, events, clock, settings):
        self.directory = directory
        self.queue = queue
        self.sender = sender
        self.consent = consent
        self.event_log = event_log
        self.events = events
        self.clock = clock
        self.settings = settings

    # ----------------------------------------------------------------- lookup

    def resolve_plan(self, user_id: int) -> Optional[str]:
        """Map the stored plan alias to a configured plan id, or None."""
        raw = self.directory.get_user_meta(user_id, MetaKey.PLAN_ID)
        if raw in (None, ""):
            raw = self.directory.get_user_meta(user_id, MetaKey.LAST_PLAN_ID)
        alias = str(raw or "").strip().lower()
        if not alias:
            return None
        aliases = self.settings.plan_aliases
        if alias in aliases:
            return aliases[alias]
        if alias in aliases.values():
            return alias
        return None

    def subscription_status(self, user_id: int) -> str:
        return str(self.directory.get_user_meta(user_id, MetaKey.SUBSCRIPTION_STATUS, "") or "").strip().lower()

    def _flagged(self, user_id: int, flag: str) -> bool:
        return bool(self.directory.get_user_meta(user_id, flag, False))

    def _can_queue(self, result: ScanResult) -> bool:
        limit = self.settings.max_queue_per_run
        return limit <= 0 or result.queued < limit

    def _fail(self, user_id: int, stage: str, error: Exception, result: ScanResult) -> None:
        result.failed += 1
        logger.exception(f"Lifecycle scan failed for user {user_id} during {stage}")
        self.event_log.add(
            f"Lifecycle scan skipped user #{user_id} ({stage}): {type(error).__name__}.",
            LogType.FAILED,
            {"user_id": user_id, "stage": stage, "status": "error"},
        )

    # ------------------------------------------------------------------- scan

    def run_scan(self) -> ScanResult:
        """Run every scan pass once and return the counters."""
        now = self.clock.now()
        result = ScanResult()
        known: List[Tuple[User, int]] = []
        newly_expired: List[ExpiredUser] = []

        for user in self.directory.query_users(has_meta=EXPIRY_META_KEYS):
            try:
                expiry = read_expiry(self.directory, user.id)
                if expiry <= 0:
                    continue
                known.append((user, expiry))
                if expiry <= now + EXPIRY_SCAN_WINDOW_SECONDS:
                    result.candidates += 1
                    self._process_candidate(user, expiry, now, result, newly_expired)
            except Exception as e:
                self._fail(user.id, "expiry", e, result)

        for user, expiry in known:
            try:
                self._process_direct(user, expiry, now, result)
            except Exception as e:
                self._fail(user.id, "direct", e, result)

        for expired in newly_expired:
            try:
                self._emit_expired_event(expired)
                result.events_emitted += 1
            except Exception as e:
                self._fail(expired.user_id, "event", e, result)

        self._scan_verify_reminders(now, result)

        self.event_log.add("Lifecycle scan completed.", LogType.CRON, result.to_dict())
        return result

    def _process_candidate(self, user: User, expiry: int, now: int, result: ScanResult, newly_expired: List[ExpiredUser]) -> None:
        plan_id = self.resolve_plan(user.id)
        if plan_id is None:
            result.skipped += 1
            self.event_log.add(
                f"Skipped user #{user.id}: plan could not be resolved.",
                LogType.CRON,
                {"user_id": user.id, "status": "unknown_plan"},
            )
            return

        diff = expiry - now
        if diff <= 0:
            is_trial = self.subscription_status(user.id) == TRIAL_STATUS
            flag = MetaKey.SENT_TRIAL_EXPIRED if is_trial else MetaKey.SENT_SUBSCRIPTION_EXPIRED
            if self._flagged(user.id, flag):
                return
            if not self._can_queue(result):
                result.deferred += 1
                return
            self.queue.enqueue(HOOK_SEND_PLAN_EXPIRED, [user.id, plan_id])
            self.directory.set_user_meta(user.id, flag, True)
            newly_expired.append(ExpiredUser(user.id, plan_id, expiry, is_trial))
            result.expired_queued += 1
        elif diff <= EXPIRY_SCAN_WINDOW_SECONDS:
            if self._flagged(user.id, MetaKey.SENT_PLAN_REMINDER):
                return
            if not self._can_queue(result):
                result.deferred += 1
                return
            days_remaining = math.ceil(diff / DAY_IN_SECONDS)
            self.queue.enqueue(HOOK_SEND_PLAN_REMINDER, [user.id, days_remaining, plan_id])
            self.directory.set_user_meta(user.id, MetaKey.SENT_PLAN_REMINDER, True)
            result.reminders_queued += 1

    def _process_direct(self, user: User, expiry: int, now: int, result: ScanResult) -> None:
        remaining = expiry - now
        if 0 < remaining <= DIRECT_REMINDER_WINDOW_SECONDS and not self._flagged(user.id, MetaKey.SENT_PLAN_REMINDER):
            plan_id = self.resolve_plan(user.id) or ""
            days_remaining = math.ceil(remaining / DAY_IN_SECONDS)
            if self.sender.send_plan_reminder(user.id, days_remaining, plan_id, delivery_mode=DELIVERY_DIRECT):
                self.directory.set_user_meta(user.id, MetaKey.SENT_PLAN_REMINDER, True)
                result.direct_reminders += 1

        elapsed = now - expiry
        if elapsed >= COMEBACK_AFTER_SECONDS and not self._flagged(user.id, MetaKey.SENT_COMEBACK):
            if not self.consent.has_marketing_consent(user.id):
                result.skipped += 1
                self.event_log.add(
                    f"Comeback email skipped for user #{user.id}: unsubscribed.",
                    LogType.CRON,
                    {"user_id": user.id, "template": "comeback", "status": "opted_out"},
                )
                return
            if self.sender.send_comeback(user.id, elapsed // DAY_IN_SECONDS, delivery_mode=DELIVERY_DIRECT):
                self.directory.set_user_meta(user.id, MetaKey.SENT_COMEBACK, True)
                result.comebacks += 1

    def _emit_expired_event(self, expired: ExpiredUser) -> None:
        event = EVENT_TRIAL_EXPIRED if expired.is_trial else EVENT_SUBSCRIPTION_EXPIRED
        context = {
            "plan": expired.plan_id,
            "expired_at": expired.expired_at,
            "triggered_by": "lifecycle_scan",
        }
        self.events.emit(event, expired.user_id, context)
        self.event_log.add(
            f'Raised "{event}" for user #{expired.user_id}.',
            LogType.EVENT,
            {"user_id": expired.user_id, **context},
        )

    def _scan_verify_reminders(self, now: int, result: ScanResult) -> None:
        for user in self.directory.query_users(has_meta=[MetaKey.VERIFY_TOKEN]):
            try:
                if self.directory.get_user_meta(user.id, MetaKey.VERIFIED_AT):
                    continue
                if user.registered_at <= 0 or now - user.registered_at < VERIFY_REMINDER_DELAY_SECONDS:
                    continue
                last = int(self.directory.get_user_meta(user.id, MetaKey.LAST_VERIFY_REMINDER, 0) or 0)
                if last and now - last < VERIFY_REMINDER_INTERVAL_SECONDS:
                    continue
                if not self._can_queue(result):
                    result.deferred += 1
                    continue
                self.queue.enqueue(HOOK_SEND_VERIFY_REMINDER, [user.id])
                self.directory.set_user_meta(user.id, MetaKey.LAST_VERIFY_REMINDER, now)
                result.verify_reminders += 1
            except Exception as e:
                self._fail(user.id, "verify_reminder", e, result)

    def run_tasks(self) -> ScanResult:
        """Scheduled entry point: scan, then drain what the scan queued."""
        result = self.run_scan()
        self.queue.process()
        return result
