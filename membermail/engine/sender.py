"""Lifecycle email handlers.

Each handler takes the user id first, renders its template and hands the
result to the mail transport. Outcomes are written to the event log as SENT
or FAILED; a failed send is not retried here.
"""

import logging
from email.utils import formataddr
from typing import Any, Dict, List, Optional

from membermail.engine.timeutil import format_date, read_expiry
from membermail.models.constants import (
    DAY_IN_SECONDS,
    HOOK_SEND_COMEBACK,
    HOOK_SEND_PLAN_EXPIRED,
    HOOK_SEND_PLAN_REMINDER,
)
from membermail.models.log_entry import LogType
from membermail.models.user import User

logger = logging.getLogger(__name__)

DELIVERY_QUEUE = "queue"
DELIVERY_DIRECT = "direct"


def plan_label(plan_id: Any) -> str:
    text = str(plan_id or "").replace("_", " ").replace("-", " ").strip()
    return text.title() if text else "membership"


class EmailSender:
    """Renders templates for a user and dispatches them."""

    def __init__(self, directory, templates, mailer, consent, event_log, clock, settings):
        self.directory = directory
        self.templates = templates
        self.mailer = mailer
        self.consent = consent
        self.event_log = event_log
        self.clock = clock
        self.settings = settings

    def default_headers(self, unsubscribe_url: str = "") -> List[str]:
        headers = [
            "Content-Type: text/html; charset=UTF-8",
            f"From: {formataddr((self.settings.sender_name(), self.settings.from_email))}",
        ]
        if unsubscribe_url:
            headers.append(f"List-Unsubscribe: <{unsubscribe_url}>")
        return headers

    def _log(self, user_id: int, slug: str, mode: str, status: str, message: str) -> None:
        self.event_log.add(
            message,
            LogType.SENT if status == "sent" else LogType.FAILED,
            {"user_id": user_id, "template": slug, "delivery_mode": mode, "status": status},
        )

    def deliver(
        self,
        user: Optional[User],
        slug: str,
        subject: str,
        placeholders: Optional[Dict[str, Any]] = None,
        delivery_mode: str = DELIVERY_QUEUE,
    ) -> bool:
        """Render `slug` for `user` and send it.

        Returns:
            True when the transport accepted the message
        """
        if user is None or not user.id:
            self.event_log.add(
                f'Email "{slug}" skipped: user not found.',
                LogType.FAILED,
                {"template": slug, "delivery_mode": delivery_mode, "status": "missing_user"},
            )
            return False
        if not user.email:
            self._log(user.id, slug, delivery_mode, "missing_email", f'Email "{slug}" skipped for user #{user.id}: no address.')
            return False

        unsubscribe_url = self.consent.get_unsubscribe_url(user.id)
        context: Dict[str, Any] = {
            "recipient_name": user.greeting_name,
            "user_email": user.email,
            "unsubscribe_url": unsubscribe_url,
        }
        context.update(placeholders or {})

        html = self.templates.render(slug, context)
        if not html:
            self._log(user.id, slug, delivery_mode, "missing_template", f'Email "{slug}" has no template content.')
            return False

        sent = self.mailer.send_mail(user.email, subject, html, self.default_headers(unsubscribe_url))
        if sent:
            self._log(user.id, slug, delivery_mode, "sent", f'Email "{slug}" sent for user #{user.id} ({delivery_mode} dispatch).')
        else:
            self._log(user.id, slug, delivery_mode, "failed", f'Email "{slug}" failed for user #{user.id} ({delivery_mode} dispatch).')
        return sent

    # ------------------------------------------------------------- lifecycle

    def _plan_placeholders(self, user_id: int, plan_id: Any) -> Dict[str, Any]:
        return {
            "plan_name": plan_label(plan_id),
            "expiry_date": format_date(read_expiry(self.directory, user_id)),
            "renew_link": self.settings.home_url(),
        }

    def send_plan_reminder(self, user_id: int, days_remaining: int = 1, plan_id: str = "", delivery_mode: str = DELIVERY_QUEUE) -> bool:
        user_id = int(user_id)
        days = max(1, int(days_remaining or 1))
        days_label = "tomorrow" if days == 1 else f"in {days} days"
        placeholders = self._plan_placeholders(user_id, plan_id)
        placeholders.update({"days_remaining": days, "days_label": days_label})
        subject = f"Your {self.settings.site_name} plan ends {days_label}"
        return self.deliver(self.directory.get_user(user_id), "plan-reminder", subject, placeholders, delivery_mode)

    def send_plan_expired(self, user_id: int, plan_id: str = "", delivery_mode: str = DELIVERY_QUEUE) -> bool:
        user_id = int(user_id)
        subject = f"Your {self.settings.site_name} plan has ended"
        return self.deliver(
            self.directory.get_user(user_id),
            "plan-expired",
            subject,
            self._plan_placeholders(user_id, plan_id),
            delivery_mode,
        )

    def send_comeback(self, user_id: int, days_since_expiry: Optional[int] = None, delivery_mode: str = DELIVERY_QUEUE) -> bool:
        user_id = int(user_id)
        if days_since_expiry is None:
            expiry = read_expiry(self.directory, user_id)
            days_since_expiry = max(0, (self.clock.now() - expiry) // DAY_IN_SECONDS) if expiry else 0
        placeholders = {
            "days_since_expiry": int(days_since_expiry),
            "renew_link": self.settings.home_url(),
        }
        subject = f"We miss you at {self.settings.site_name}"
        return self.deliver(self.directory.get_user(user_id), "comeback", subject, placeholders, delivery_mode)

    def register_hooks(self, hooks) -> None:
        hooks.register(HOOK_SEND_PLAN_REMINDER, self.send_plan_reminder)
        hooks.register(HOOK_SEND_PLAN_EXPIRED, self.send_plan_expired)
        hooks.register(HOOK_SEND_COMEBACK, self.send_comeback)
