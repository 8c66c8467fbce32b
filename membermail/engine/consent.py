"""Marketing consent: unsubscribe links and the opt-out flag."""

import logging
from typing import Optional
from urllib.parse import urlencode

from membermail.auth.tokens import generate_link_token, tokens_match
from membermail.errors import ValidationError
from membermail.models.constants import EVENT_UNSUBSCRIBED
from membermail.models.log_entry import LogType
from membermail.models.tokens import TokenRecord
from membermail.models.user import MetaKey

logger = logging.getLogger(__name__)


class Consent:
    """Unsubscribe token protocol.

    The stored token is rotated, never deleted, after a successful
    unsubscribe: the link just used stops working while the next email
    carries a fresh one.
    """

    def __init__(self, directory, event_log, events, clock, settings):
        self.directory = directory
        self.event_log = event_log
        self.events = events
        self.clock = clock
        self.settings = settings

    def _stored_token(self, user_id: int) -> Optional[TokenRecord]:
        raw = self.directory.get_user_meta(user_id, MetaKey.UNSUBSCRIBE_TOKEN)
        if not isinstance(raw, dict):
            return None
        try:
            return TokenRecord.model_validate(raw)
        except ValueError:
            return None

    def rotate_token(self, user_id: int) -> str:
        """Issue a new unsubscribe token, invalidating the previous one."""
        now = self.clock.now()
        record = TokenRecord(
            token=generate_link_token(self.settings.token_secret, user_id, now),
            generated_at=now,
        )
        self.directory.set_user_meta(user_id, MetaKey.UNSUBSCRIBE_TOKEN, record.model_dump())
        return record.token

    def ensure_token(self, user_id: int) -> str:
        record = self._stored_token(user_id)
        if record is not None and record.token:
            return record.token
        return self.rotate_token(user_id)

    def get_unsubscribe_url(self, user_id: int) -> str:
        """Unsubscribe link for a user; '' for invalid ids."""
        if not user_id or user_id <= 0:
            return ""
        token = self.ensure_token(user_id)
        return f"{self.settings.unsubscribe_url()}?{urlencode({'u': user_id, 't': token})}"

    def has_marketing_consent(self, user_id: int) -> bool:
        return not bool(self.directory.get_user_meta(user_id, MetaKey.MARKETING_OPT_OUT, False))

    def handle_unsubscribe(self, user_id: int, token: str) -> bool:
        """Opt a user out of marketing email.

        Raises:
            ValidationError: unknown user, missing token or token mismatch.
                Nothing is changed in that case.
        """
        if not user_id or user_id <= 0 or not token:
            raise ValidationError("Missing unsubscribe parameters")
        if self.directory.get_user(user_id) is None:
            raise ValidationError("Unknown user")

        record = self._stored_token(user_id)
        if record is None or not tokens_match(record.token, token):
            self.event_log.add(
                f"Rejected unsubscribe request for user #{user_id}.",
                LogType.CONSENT,
                {"user_id": user_id, "status": "invalid"},
            )
            raise ValidationError("Invalid unsubscribe token")

        self.directory.set_user_meta(user_id, MetaKey.MARKETING_OPT_OUT, True)
        self.event_log.add(
            f"User #{user_id} unsubscribed from marketing emails.",
            LogType.CONSENT,
            {"user_id": user_id, "status": "unsubscribed"},
        )
        self.events.emit(EVENT_UNSUBSCRIBED, user_id)
        self.rotate_token(user_id)
        return True
