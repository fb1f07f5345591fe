"""User-facing presence schemas."""

from datetime import datetime

from pydantic import BaseModel, Field


class PresenceResponse(BaseModel):
    """Live online status derived from the connection registry."""

    user_id: int
    is_online: bool = Field(..., description="True while the user has a registered live channel")
    last_active_at: datetime | None = Field(
        None,
        description="When the user's last channel closed; null if online or never seen",
    )
    timestamp: datetime
