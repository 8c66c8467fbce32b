"""Tests for session tokens, link tokens and request nonces."""

import jwt as pyjwt
import pytest

from membermail.auth import jwt as session_jwt
from membermail.auth.jwt import create_access_token, decode_access_token, get_user_id_from_token
from membermail.auth.nonce import NONCE_LENGTH, create_nonce, require_nonce, verify_nonce
from membermail.auth.tokens import generate_link_token, tokens_match
from membermail.errors import SecurityCheckFailure
from membermail.models.constants import NONCE_TICK_SECONDS

NOW = 1800000000


class TestSessionTokens:
    """JWT session round trip."""

    def test_user_id_round_trip(self):
        token = create_access_token(42)
        assert decode_access_token(token)["sub"] == "42"
        assert get_user_id_from_token(token) == 42

    def test_invalid_tokens(self):
        assert get_user_id_from_token("not-a-jwt") is None
        forged = pyjwt.encode({"sub": "42"}, "other-secret", algorithm="HS256")
        assert get_user_id_from_token(forged) is None

    def test_non_numeric_subject(self):
        token = pyjwt.encode({"sub": "abc"}, session_jwt.JWT_SECRET_KEY, algorithm=session_jwt.JWT_ALGORITHM)
        assert get_user_id_from_token(token) is None


class TestLinkTokens:
    """Opaque link tokens."""

    def test_tokens_are_unique_hex(self):
        first = generate_link_token("secret", 1, NOW)
        second = generate_link_token("secret", 1, NOW)
        assert first != second
        assert len(first) == 64
        int(first, 16)

    def test_tokens_match(self):
        assert tokens_match("abc", "abc") is True
        assert tokens_match("abc", "abd") is False
        assert tokens_match("", "") is False
        assert tokens_match("abc", "") is False


class TestNonces:
    """Action nonces with a two-tick lifetime."""

    def test_current_and_previous_tick(self):
        nonce = create_nonce("secret", 7, "resend", NOW)
        assert len(nonce) == NONCE_LENGTH
        assert verify_nonce("secret", 7, "resend", nonce, NOW) is True
        assert verify_nonce("secret", 7, "resend", nonce, NOW + NONCE_TICK_SECONDS) is True
        assert verify_nonce("secret", 7, "resend", nonce, NOW + 2 * NONCE_TICK_SECONDS) is False

    def test_bound_to_user_action_and_secret(self):
        nonce = create_nonce("secret", 7, "resend", NOW)
        assert verify_nonce("secret", 8, "resend", nonce, NOW) is False
        assert verify_nonce("secret", 7, "other", nonce, NOW) is False
        assert verify_nonce("other", 7, "resend", nonce, NOW) is False
        assert verify_nonce("secret", 7, "resend", "", NOW) is False

    def test_require_nonce_raises(self):
        require_nonce("secret", 7, "resend", create_nonce("secret", 7, "resend", NOW), NOW)
        with pytest.raises(SecurityCheckFailure):
            require_nonce("secret", 7, "resend", "bogus", NOW)
