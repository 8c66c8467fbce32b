"""Queue job and rate window models."""

from typing import Any, List
from pydantic import BaseModel, Field

from membermail.models.constants import RATE_WINDOW_SECONDS


class QueueJob(BaseModel):
    """A deferred hook invocation waiting in the delivery queue."""

    hook_id: str = Field(..., description="Registered hook handler id")
    args: List[Any] = Field(default_factory=list, description="Positional handler arguments")
    enqueued_at: int = Field(..., description="Enqueue time (epoch seconds)")


class RateWindow(BaseModel):
    """Rolling hour window used to cap outbound volume."""

    window_start: int = Field(0, description="Window start (epoch seconds)")
    count: int = Field(0, description="Jobs dispatched in this window")

    def is_stale(self, now: int) -> bool:
        return self.window_start <= 0 or now - self.window_start >= RATE_WINDOW_SECONDS

    def next_opening(self, now: int, retry_delay: int) -> int:
        """Seconds until the window reopens, or `retry_delay` if it is already past."""
        reopen_at = self.window_start + RATE_WINDOW_SECONDS
        if reopen_at <= now:
            return retry_delay
        return reopen_at - now
