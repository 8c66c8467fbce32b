"""SMTP mail transport.

`send_mail(to, subject, html, headers)` returns a boolean and never raises
for transport problems; callers log the outcome.
"""

import logging
import smtplib
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, formatdate
from typing import Dict, List, Sequence, Tuple

import bleach

from membermail.errors import TransientSendFailure

logger = logging.getLogger(__name__)

# Set on the MIME parts, not copied as raw headers.
_MIME_HEADERS = {"content-type", "mime-version", "content-transfer-encoding"}


def parse_headers(headers: Sequence[str]) -> List[Tuple[str, str]]:
    """Split `Name: value` header lines, skipping malformed ones."""
    parsed = []
    for line in headers or []:
        name, sep, value = str(line).partition(":")
        if sep and name.strip():
            parsed.append((name.strip(), value.strip()))
    return parsed


def html_to_text(html: str) -> str:
    text = bleach.clean(html, tags=set(), strip=True, strip_comments=True)
    lines = [line.strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


class SmtpMailSender:
    """Sends HTML email through an SMTP relay."""

    def __init__(self, settings):
        self.settings = settings

    def build_message(self, to: str, subject: str, html: str, headers: Sequence[str]) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        extra: Dict[str, str] = {}
        for name, value in parse_headers(headers):
            if name.lower() not in _MIME_HEADERS:
                extra[name] = value

        msg["Subject"] = subject
        msg["From"] = extra.pop("From", formataddr((self.settings.sender_name(), self.settings.from_email)))
        msg["To"] = to
        msg["Date"] = formatdate(localtime=True)
        domain = self.settings.from_email.rpartition("@")[2] or "localhost"
        msg["Message-ID"] = f"<{uuid.uuid4()}@{domain}>"
        for name, value in extra.items():
            msg[name] = value

        msg.attach(MIMEText(html_to_text(html), "plain", "utf-8"))
        msg.attach(MIMEText(html, "html", "utf-8"))
        return msg

    def transmit(self, msg: MIMEMultipart) -> None:
        """Hand a message to the relay.

        Raises:
            TransientSendFailure: connection or SMTP protocol error
        """
        try:
            with smtplib.SMTP(self.settings.smtp_host, self.settings.smtp_port, timeout=self.settings.smtp_timeout) as smtp:
                if self.settings.smtp_use_tls:
                    smtp.starttls()
                if self.settings.smtp_username:
                    smtp.login(self.settings.smtp_username, self.settings.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise TransientSendFailure(f"{type(e).__name__}: {str(e)}") from e

    def send_mail(self, to: str, subject: str, html: str, headers: Sequence[str] = ()) -> bool:
        if not to:
            return False
        try:
            self.transmit(self.build_message(to, subject, html, headers))
        except TransientSendFailure as e:
            logger.warning(f"SMTP send to {to} failed: {str(e)}")
            return False
        return True
