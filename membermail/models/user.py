"""User data model for membermail."""

from typing import Optional
from pydantic import BaseModel, Field


class MetaKey:
    """User meta keys owned by the notification engine."""

    PLAN_ID = "plan_id"
    LAST_PLAN_ID = "last_plan_id"
    SUBSCRIPTION_EXPIRY = "subscription_expiry"
    SUBSCRIPTION_STATUS = "subscription_status"
    VERIFIED_AT = "verified_at"
    VERIFY_TOKEN = "verify_token"
    UNSUBSCRIBE_TOKEN = "unsubscribe_token"
    MARKETING_OPT_OUT = "marketing_opt_out"
    LAST_VERIFY_REMINDER = "last_verify_reminder"

    SENT_TRIAL_EXPIRED = "sent_trial_expired"
    SENT_SUBSCRIPTION_EXPIRED = "sent_subscription_expired"
    SENT_PLAN_REMINDER = "sent_plan_reminder"
    SENT_COMEBACK = "sent_comeback"


# Expiry may be stored under any of these keys; first non-empty wins.
EXPIRY_META_KEYS = (
    MetaKey.SUBSCRIPTION_EXPIRY,
    "subscription_end",
    "plan_end",
)


class User(BaseModel):
    """Member account as seen by the notification engine."""

    id: Optional[int] = Field(None, description="Unique positive user identifier")
    email: str = Field(..., description="User email address")
    login: str = Field(..., description="Login name")
    display_name: Optional[str] = Field(None, description="User display name")
    registered_at: int = Field(0, description="Registration time (epoch seconds)")
    is_admin: bool = Field(False, description="Administrators bypass verification gating")

    class Config:
        """Pydantic configuration."""
        use_enum_values = True

    @property
    def greeting_name(self) -> str:
        return self.display_name or self.login
