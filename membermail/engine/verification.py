"""Email verification protocol and access gating.

A user moves Unverified -> PendingToken (token issued and mailed) ->
Verified. Tokens are single use: a successful check deletes the stored
record, so a replayed link fails. Issuing a new token overwrites the old one.
"""

import logging
from typing import Iterable, Optional
from urllib.parse import urlencode

from membermail.auth.tokens import generate_link_token, tokens_match
from membermail.engine.sender import DELIVERY_DIRECT, DELIVERY_QUEUE
from membermail.errors import ValidationError
from membermail.models.constants import (
    EVENT_USER_REGISTERED,
    EVENT_VERIFIED,
    HOOK_SEND_VERIFY_REMINDER,
    HOOK_SEND_WELCOME_VERIFY,
)
from membermail.models.log_entry import LogType
from membermail.models.tokens import TokenRecord
from membermail.models.user import MetaKey, User

logger = logging.getLogger(__name__)

RESEND_PATH = "/ajax/resend-verification"

# Paths an unverified user may always reach.
DEFAULT_GATE_ALLOW_PATHS = (
    "/login",
    "/logout",
    "/health",
    "/static",
    "/docs",
    "/openapi.json",
    RESEND_PATH,
)


class VerifyOutcome:
    """Result of a successful verification request."""

    def __init__(self, user_id: int, redirect_url: str, login: bool):
        self.user_id = user_id
        self.redirect_url = redirect_url
        self.login = login


class ResendResult:
    """Outcome of a resend request, shaped for the JSON endpoint."""

    def __init__(self, success: bool, message: str):
        self.success = success
        self.message = message

    def to_response(self) -> dict:
        return {"success": self.success, "data": {"message": self.message}}


def _path_matches(path: str, prefixes: Iterable[str]) -> bool:
    for prefix in prefixes:
        prefix = (prefix or "").rstrip("/")
        if not prefix:
            continue
        if path == prefix or path.startswith(prefix + "/"):
            return True
    return False


class VerificationProtocol:
    """Issues and validates verification tokens; decides access gating."""

    def __init__(self, directory, sender, event_log, events, clock, settings):
        self.directory = directory
        self.sender = sender
        self.event_log = event_log
        self.events = events
        self.clock = clock
        self.settings = settings

    # ----------------------------------------------------------------- tokens

    def issue_verification_token(self, user_id: int) -> str:
        """Create and store a fresh token, replacing any previous one."""
        if not user_id or user_id <= 0:
            raise ValidationError("Invalid user id")
        now = self.clock.now()
        record = TokenRecord(
            token=generate_link_token(self.settings.token_secret, user_id, now),
            generated_at=now,
        )
        self.directory.set_user_meta(user_id, MetaKey.VERIFY_TOKEN, record.model_dump())
        return record.token

    def build_verification_link(self, user_id: int, token: str) -> str:
        return f"{self.settings.verify_url()}?{urlencode({'user': user_id, 'token': token})}"

    def is_verified(self, user_id: int) -> bool:
        return bool(self.directory.get_user_meta(user_id, MetaKey.VERIFIED_AT))

    def _stored_token(self, user_id: int) -> Optional[TokenRecord]:
        raw = self.directory.get_user_meta(user_id, MetaKey.VERIFY_TOKEN)
        if not isinstance(raw, dict):
            return None
        try:
            return TokenRecord.model_validate(raw)
        except ValueError:
            return None

    def _reject(self, user_id: int, reason: str) -> ValidationError:
        self.event_log.add(
            f"Verification failed for user #{user_id}: {reason}.",
            LogType.VERIFY,
            {"user_id": user_id, "status": "failed", "reason": reason},
        )
        return ValidationError(reason)

    def handle_verify_request(self, user_id: int, token: str, authenticated: bool = False) -> VerifyOutcome:
        """Validate a verification link.

        Raises:
            ValidationError: bad parameters, unknown user, no pending token,
                token mismatch or expired token
        """
        if not user_id or user_id <= 0 or not token:
            raise self._reject(user_id or 0, "missing parameters")
        if self.directory.get_user(user_id) is None:
            raise self._reject(user_id, "unknown user")

        record = self._stored_token(user_id)
        if record is None:
            raise self._reject(user_id, "no pending token")
        if not tokens_match(record.token, token):
            raise self._reject(user_id, "token mismatch")

        now = self.clock.now()
        ttl = self.settings.verify_token_ttl
        if ttl > 0 and now - record.generated_at > ttl:
            raise self._reject(user_id, "token expired")

        self.directory.set_user_meta(user_id, MetaKey.VERIFIED_AT, now)
        self.directory.delete_user_meta(user_id, MetaKey.VERIFY_TOKEN)

        login = bool(self.settings.verify_autologin) and not authenticated
        self.event_log.add(
            f"User #{user_id} verified their email address.",
            LogType.VERIFY,
            {"user_id": user_id, "status": "verified", "auto_login": login},
        )
        self.events.emit(EVENT_VERIFIED, user_id)
        redirect_url = self.settings.verify_redirect_url or self.settings.home_url()
        return VerifyOutcome(user_id=user_id, redirect_url=redirect_url, login=login)

    # ------------------------------------------------------------------ email

    def send_verification_email(self, user_id: int, reminder: bool = False, delivery_mode: str = DELIVERY_QUEUE) -> bool:
        """Issue a fresh token and mail the verification link."""
        user_id = int(user_id)
        user = self.directory.get_user(user_id)
        slug = "verify-reminder" if reminder else "welcome-verify"
        if user is not None and self.is_verified(user_id):
            self.event_log.add(
                f'Email "{slug}" skipped: user #{user_id} is already verified.',
                LogType.VERIFY,
                {"user_id": user_id, "template": slug, "status": "already_verified"},
            )
            return False

        link = ""
        if user is not None:
            link = self.build_verification_link(user_id, self.issue_verification_token(user_id))
        site = self.settings.site_name
        subject = f"Reminder: verify your {site} email" if reminder else f"Verify your {site} email"
        return self.sender.deliver(user, slug, subject, {"verify_link": link}, delivery_mode)

    def send_welcome_verify(self, user_id: int) -> bool:
        return self.send_verification_email(user_id, reminder=False)

    def send_verify_reminder(self, user_id: int) -> bool:
        return self.send_verification_email(user_id, reminder=True)

    def on_user_registered(self, user_id: int) -> bool:
        """Send the first verification email as soon as an account exists.

        Listener for the `user_registered` event. The email goes out directly
        so the new member is not held behind the queue's hourly cap.
        """
        if not user_id or int(user_id) <= 0:
            return False
        return self.send_verification_email(int(user_id), reminder=False, delivery_mode=DELIVERY_DIRECT)

    def resend_verification(self, user_id: int) -> ResendResult:
        """Send a new verification email right away (interstitial button)."""
        if self.is_verified(user_id):
            return ResendResult(False, "Your email address is already verified.")
        if self.send_verification_email(user_id, delivery_mode=DELIVERY_DIRECT):
            return ResendResult(True, "A new verification email is on its way.")
        return ResendResult(False, "We could not send the verification email. Please try again later.")

    def register_hooks(self, hooks) -> None:
        hooks.register(HOOK_SEND_WELCOME_VERIFY, self.send_welcome_verify)
        hooks.register(HOOK_SEND_VERIFY_REMINDER, self.send_verify_reminder)

    def subscribe(self, events) -> None:
        events.subscribe(EVENT_USER_REGISTERED, self.on_user_registered)

    # ----------------------------------------------------------------- gating

    def interstitial_url(self) -> str:
        return self.settings.site_url.rstrip("/") + self.settings.verify_required_path

    def allowed_paths(self):
        return (
            *DEFAULT_GATE_ALLOW_PATHS,
            self.settings.verify_endpoint,
            self.settings.unsubscribe_endpoint,
            *self.settings.gate_allow_paths,
        )

    def gate_redirect(self, user: Optional[User], path: str) -> Optional[str]:
        """Where to send this request instead, or None to let it through."""
        if user is None or not user.id or user.is_admin:
            return None
        verified = self.is_verified(user.id)
        if _path_matches(path, (self.settings.verify_required_path,)):
            return self.settings.home_url() if verified else None
        if verified or _path_matches(path, self.allowed_paths()):
            return None
        return self.interstitial_url()
