"""Request nonces for authenticated form/AJAX actions.

A nonce is an HMAC of the action, the user id and a 12-hour tick. Nonces
from the current and the previous tick are accepted.
"""

import hashlib
import hmac

from membermail.errors import SecurityCheckFailure
from membermail.models.constants import NONCE_TICK_SECONDS

NONCE_LENGTH = 20


def _tick(now: int) -> int:
    return int(now) // NONCE_TICK_SECONDS


def _nonce_for_tick(secret: str, user_id: int, action: str, tick: int) -> str:
    message = f"{action}|{user_id}|{tick}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()[:NONCE_LENGTH]


def create_nonce(secret: str, user_id: int, action: str, now: int) -> str:
    return _nonce_for_tick(secret, user_id, action, _tick(now))


def verify_nonce(secret: str, user_id: int, action: str, nonce: str, now: int) -> bool:
    if not nonce:
        return False
    tick = _tick(now)
    for candidate_tick in (tick, tick - 1):
        expected = _nonce_for_tick(secret, user_id, action, candidate_tick)
        if hmac.compare_digest(expected.encode("utf-8"), str(nonce).encode("utf-8")):
            return True
    return False


def require_nonce(secret: str, user_id: int, action: str, nonce: str, now: int) -> None:
    """Raise SecurityCheckFailure unless the nonce is valid."""
    if not verify_nonce(secret, user_id, action, nonce, now):
        raise SecurityCheckFailure(f"Invalid nonce for {action}")
