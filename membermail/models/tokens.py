"""Stored token records for verification and unsubscribe links."""

from pydantic import BaseModel, Field


class TokenRecord(BaseModel):
    """Opaque token plus its issue time."""

    token: str = Field(..., description="Opaque token string")
    generated_at: int = Field(..., description="Issue time (epoch seconds)")
