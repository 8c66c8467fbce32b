"""Link token utilities for verification and unsubscribe URLs.

Tokens are opaque HMAC-SHA256 digests of the user id, the issue time and
fresh random bytes. They are compared in constant time.
"""

import hashlib
import hmac
import secrets

from membermail.models.constants import TOKEN_RANDOM_BYTES


def generate_link_token(secret: str, user_id: int, issued_at: int) -> str:
    """Generate a new opaque token for a user."""
    payload = f"{user_id}|{issued_at}|{secrets.token_hex(TOKEN_RANDOM_BYTES)}"
    mac = hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256)
    return mac.hexdigest()


def tokens_match(expected: str, provided: str) -> bool:
    """Constant-time comparison of two token strings."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))
