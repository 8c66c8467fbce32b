"""Integration tests for API endpoints.

These tests verify API endpoints work correctly end-to-end.
"""

from urllib.parse import parse_qs, urlparse

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from membermail.api.app import RESEND_ACTION, enforce_verification_gate, mount_member_routes
from membermail.auth.jwt import create_access_token
from membermail.auth.nonce import create_nonce
from membermail.models.user import MetaKey
from membermail.services import get_services


def _auth(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


class TestHealth:
    """Test health endpoint."""

    def test_health(self, test_client):
        response = test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestVerifyEndpoint:
    """Test GET /verify."""

    def test_valid_link_redirects_and_logs_in(self, test_client, services, make_user):
        user = make_user()
        token = services.verification.issue_verification_token(user.id)

        response = test_client.get("/verify", params={"user": user.id, "token": token}, follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "https://example.test/"
        assert "access_token=" in response.headers.get("set-cookie", "")
        assert services.verification.is_verified(user.id)

    def test_signed_in_user_is_not_logged_in_again(self, test_client, services, make_user):
        user = make_user()
        token = services.verification.issue_verification_token(user.id)

        response = test_client.get(
            "/verify",
            params={"user": user.id, "token": token},
            headers=_auth(user),
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert "set-cookie" not in response.headers

    def test_invalid_link(self, test_client, services, make_user):
        user = make_user()
        services.verification.issue_verification_token(user.id)

        response = test_client.get("/verify", params={"user": user.id, "token": "nope"}, follow_redirects=False)

        assert response.status_code == 403
        assert "Verification failed" in response.text
        assert not services.verification.is_verified(user.id)

    def test_malformed_user_param(self, test_client):
        response = test_client.get("/verify", params={"user": "abc", "token": "x"})
        assert response.status_code == 403


class TestUnsubscribeEndpoint:
    """Test GET /unsubscribe."""

    def test_valid_link(self, test_client, services, make_user):
        user = make_user()
        query = parse_qs(urlparse(services.consent.get_unsubscribe_url(user.id)).query)

        response = test_client.get("/unsubscribe", params={"u": query["u"][0], "t": query["t"][0]})

        assert response.status_code == 200
        assert "Unsubscribed" in response.text
        assert services.consent.has_marketing_consent(user.id) is False

    def test_configured_redirect(self, test_client, services, make_user):
        services.settings.unsubscribe_redirect_url = "https://example.test/goodbye"
        user = make_user()
        query = parse_qs(urlparse(services.consent.get_unsubscribe_url(user.id)).query)

        response = test_client.get(
            "/unsubscribe",
            params={"u": query["u"][0], "t": query["t"][0]},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert response.headers["location"] == "https://example.test/goodbye"

    def test_forged_token(self, test_client, services, make_user):
        user = make_user()
        services.consent.get_unsubscribe_url(user.id)

        response = test_client.get("/unsubscribe", params={"u": user.id, "t": "forged"})

        assert response.status_code == 403
        assert "Unable to unsubscribe" in response.text
        assert services.consent.has_marketing_consent(user.id) is True


class TestResendEndpoint:
    """Test POST /ajax/resend-verification."""

    def test_requires_authentication(self, test_client):
        response = test_client.post("/ajax/resend-verification", json={"nonce": "x"})
        assert response.status_code == 401

    def test_valid_nonce_sends_email(self, test_client, services, make_user, mailer, clock):
        user = make_user()
        nonce = create_nonce("test-secret", user.id, RESEND_ACTION, clock.now())

        response = test_client.post("/ajax/resend-verification", json={"nonce": nonce}, headers=_auth(user))

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "data": {"message": "A new verification email is on its way."},
        }
        assert len(mailer.sent) == 1
        assert mailer.sent[0]["to"] == user.email

    def test_previous_tick_nonce_is_accepted(self, test_client, services, make_user, clock):
        user = make_user()
        nonce = create_nonce("test-secret", user.id, RESEND_ACTION, clock.now() - 12 * 3600)

        response = test_client.post("/ajax/resend-verification", json={"nonce": nonce}, headers=_auth(user))

        assert response.json()["success"] is True

    def test_bad_nonce(self, test_client, services, make_user, mailer):
        user = make_user()

        response = test_client.post("/ajax/resend-verification", json={"nonce": "bogus"}, headers=_auth(user))

        assert response.status_code == 403
        assert response.json()["success"] is False
        assert mailer.sent == []
        assert services.event_log.get()[0].context["status"] == "security_check_failed"

    def test_already_verified(self, test_client, make_user, mailer, clock):
        user = make_user(meta={MetaKey.VERIFIED_AT: 1})
        nonce = create_nonce("test-secret", user.id, RESEND_ACTION, clock.now())

        response = test_client.post("/ajax/resend-verification", json={"nonce": nonce}, headers=_auth(user))

        assert response.json() == {
            "success": False,
            "data": {"message": "Your email address is already verified."},
        }
        assert mailer.sent == []


class TestInterstitial:
    """Test the verify-required page."""

    def test_anonymous_goes_home(self, test_client):
        response = test_client.get("/verify-required", follow_redirects=False)
        assert response.status_code == 302
        assert response.headers["location"] == "https://example.test/"

    def test_unverified_user_sees_resend_button(self, test_client, make_user, clock):
        user = make_user()

        response = test_client.get("/verify-required", headers=_auth(user))

        assert response.status_code == 200
        assert "Please verify your email address" in response.text
        nonce = create_nonce("test-secret", user.id, RESEND_ACTION, clock.now())
        assert f'data-nonce="{nonce}"' in response.text

    def test_verified_user_is_sent_home(self, test_client, make_user):
        user = make_user(meta={MetaKey.VERIFIED_AT: 1})

        response = test_client.get("/verify-required", headers=_auth(user), follow_redirects=False)

        assert response.status_code == 303
        assert response.headers["location"] == "https://example.test/"


class TestVerificationGate:
    """Test the global gate dependency on an arbitrary member page."""

    def _client(self, services):
        app = FastAPI(dependencies=[Depends(enforce_verification_gate)])

        @app.get("/account")
        def account():
            return {"page": "account"}

        app.dependency_overrides[get_services] = lambda: services
        return TestClient(app)

    def test_unverified_user_is_redirected(self, services, make_user):
        user = make_user()
        response = self._client(services).get("/account", headers=_auth(user), follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"] == "https://example.test/verify-required"

    def test_verified_user_passes(self, services, make_user):
        user = make_user(meta={MetaKey.VERIFIED_AT: 1})
        response = self._client(services).get("/account", headers=_auth(user))
        assert response.status_code == 200
        assert response.json() == {"page": "account"}

    def test_anonymous_and_admin_pass(self, services, make_user):
        admin = make_user(is_admin=True)
        client = self._client(services)
        assert client.get("/account").status_code == 200
        assert client.get("/account", headers=_auth(admin)).status_code == 200


class TestConfiguredEndpoints:
    """Link targets follow the configured paths."""

    def _client(self, services):
        services.settings.verify_endpoint = "/account/verify"
        services.settings.unsubscribe_endpoint = "/account/unsubscribe"
        app = FastAPI(dependencies=[Depends(enforce_verification_gate)])
        mount_member_routes(app, services.settings)
        app.dependency_overrides[get_services] = lambda: services
        return TestClient(app)

    @staticmethod
    def _path_and_query(link: str) -> str:
        parsed = urlparse(link)
        return f"{parsed.path}?{parsed.query}"

    def test_verification_link_reaches_custom_endpoint(self, services, make_user):
        client = self._client(services)
        user = make_user()
        token = services.verification.issue_verification_token(user.id)
        link = services.verification.build_verification_link(user.id, token)
        assert link.startswith("https://example.test/account/verify?")

        assert client.get(f"/verify?user={user.id}&token={token}", follow_redirects=False).status_code == 404
        response = client.get(self._path_and_query(link), follow_redirects=False)
        assert response.status_code == 302
        assert services.verification.is_verified(user.id)

    def test_unsubscribe_link_reaches_custom_endpoint(self, services, make_user):
        client = self._client(services)
        user = make_user()
        link = services.consent.get_unsubscribe_url(user.id)
        assert link.startswith("https://example.test/account/unsubscribe?")

        response = client.get(self._path_and_query(link))
        assert response.status_code == 200
        assert "Unsubscribed" in response.text
        assert services.consent.has_marketing_consent(user.id) is False
