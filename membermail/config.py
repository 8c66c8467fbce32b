"""Runtime configuration for membermail.

Values come from the environment (optionally a local `.env` file) and are
collected into a `Settings` model so components receive them explicitly.
"""

import os
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from membermail.models.constants import DEFAULT_VERIFY_TOKEN_TTL, MAX_QUEUE_PER_RUN

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseModel):
    """Site and engine settings."""

    site_name: str = Field("Membership Site", description="Site name shown in emails")
    site_tagline: str = Field("", description="Short site tagline")
    site_url: str = Field("http://localhost:8000", description="Public home URL")
    support_email: str = Field("support@example.com", description="Reply/support address")
    from_name: str = Field("", description="Sender display name (defaults to site name)")
    from_email: str = Field("no-reply@example.com", description="Sender address")

    verify_endpoint: str = Field("/verify", description="Path of the verification endpoint")
    unsubscribe_endpoint: str = Field("/unsubscribe", description="Path of the unsubscribe endpoint")
    verify_required_path: str = Field("/verify-required", description="Interstitial path for unverified users")
    verify_token_ttl: int = Field(DEFAULT_VERIFY_TOKEN_TTL, description="Verification token lifetime in seconds (<= 0 never expires)")
    verify_autologin: bool = Field(True, description="Log the user in after a successful verification")
    verify_redirect_url: str = Field("", description="Redirect after verification (defaults to site URL)")
    unsubscribe_redirect_url: str = Field("", description="Optional redirect after unsubscribe")
    gate_allow_paths: List[str] = Field(default_factory=list, description="Extra paths exempt from verification gating")

    template_override_dir: Optional[str] = Field(None, description="Directory holding template overrides")

    plan_aliases: Dict[str, str] = Field(default_factory=dict, description="Plan alias -> plan id")

    smtp_host: str = Field("localhost", description="SMTP host")
    smtp_port: int = Field(25, description="SMTP port")
    smtp_username: str = Field("", description="SMTP username")
    smtp_password: str = Field("", description="SMTP password")
    smtp_use_tls: bool = Field(False, description="Use STARTTLS")
    smtp_timeout: int = Field(30, description="SMTP timeout in seconds")

    token_secret: str = Field("change-me-in-production", description="HMAC key for verification tokens and nonces")
    scan_interval_seconds: int = Field(43200, description="Lifecycle scan interval")
    max_queue_per_run: int = Field(MAX_QUEUE_PER_RUN, description="Jobs one lifecycle scan may queue (<= 0 means no cap)")

    def verify_url(self) -> str:
        return self.site_url.rstrip("/") + self.verify_endpoint

    def unsubscribe_url(self) -> str:
        return self.site_url.rstrip("/") + self.unsubscribe_endpoint

    def home_url(self) -> str:
        return self.site_url.rstrip("/") + "/"

    def sender_name(self) -> str:
        return self.from_name or self.site_name


def _plan_aliases_from_env() -> Dict[str, str]:
    trial_id = os.getenv("TRIAL_PLAN_ID", "trial")
    monthly_id = os.getenv("MONTHLY_PLAN_ID", "monthly")
    yearly_id = os.getenv("YEARLY_PLAN_ID", "yearly")
    return {
        "trial": trial_id,
        "month": monthly_id,
        "monthly": monthly_id,
        "year": yearly_id,
        "yearly": yearly_id,
    }


def load_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings(
        site_name=os.getenv("SITE_NAME", "Membership Site"),
        site_tagline=os.getenv("SITE_TAGLINE", ""),
        site_url=os.getenv("SITE_URL", "http://localhost:8000"),
        support_email=os.getenv("SUPPORT_EMAIL", "support@example.com"),
        from_name=os.getenv("MAIL_FROM_NAME", ""),
        from_email=os.getenv("MAIL_FROM_EMAIL", "no-reply@example.com"),
        verify_endpoint=os.getenv("VERIFY_ENDPOINT", "/verify"),
        unsubscribe_endpoint=os.getenv("UNSUBSCRIBE_ENDPOINT", "/unsubscribe"),
        verify_required_path=os.getenv("VERIFY_REQUIRED_PATH", "/verify-required"),
        verify_token_ttl=int(os.getenv("VERIFY_TOKEN_TTL", str(DEFAULT_VERIFY_TOKEN_TTL))),
        verify_autologin=_env_bool("VERIFY_AUTOLOGIN", "True"),
        verify_redirect_url=os.getenv("VERIFY_REDIRECT_URL", ""),
        unsubscribe_redirect_url=os.getenv("UNSUBSCRIBE_REDIRECT_URL", ""),
        gate_allow_paths=_env_list("VERIFY_GATE_ALLOW_PATHS", ""),
        template_override_dir=os.getenv("TEMPLATE_OVERRIDE_DIR") or None,
        plan_aliases=_plan_aliases_from_env(),
        smtp_host=os.getenv("SMTP_HOST", "localhost"),
        smtp_port=int(os.getenv("SMTP_PORT", "25")),
        smtp_username=os.getenv("SMTP_USERNAME", ""),
        smtp_password=os.getenv("SMTP_PASSWORD", ""),
        smtp_use_tls=_env_bool("SMTP_USE_TLS", "False"),
        smtp_timeout=int(os.getenv("SMTP_TIMEOUT_SEC", "30")),
        # Prefer a dedicated secret, fall back to the JWT secret.
        token_secret=(
            os.getenv("TOKEN_SECRET_KEY")
            or os.getenv("JWT_SECRET_KEY")
            or "change-me-in-production"
        ),
        scan_interval_seconds=int(os.getenv("SCAN_INTERVAL_SEC", "43200")),
        max_queue_per_run=int(os.getenv("SCAN_MAX_QUEUE_PER_RUN", str(MAX_QUEUE_PER_RUN))),
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process settings (FastAPI dependency)."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
