"""User presence and profile-card endpoints used by the messaging UI."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, HTTPException, status

from blogx_chat.api.v1.dependencies import RegistryDep, SessionDep
from blogx_chat.models import User
from blogx_chat.schemas.direct_message import PeerProfile
from blogx_chat.schemas.user import PresenceResponse

router = APIRouter(prefix="/users", tags=["users"])


def _get_user_or_404(db: SessionDep, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.get("/{user_id}/status", response_model=PresenceResponse)
async def get_user_status(user_id: int, db: SessionDep, registry: RegistryDep) -> PresenceResponse:
    """Report whether ``user_id`` currently holds a live channel."""
    _get_user_or_404(db, user_id)
    presence = registry.presence(user_id)
    return PresenceResponse(
        user_id=user_id,
        is_online=presence.is_online,
        last_active_at=presence.last_active_at,
        timestamp=datetime.now(UTC),
    )


@router.get("/message/{user_id}", response_model=PeerProfile)
async def get_message_profile(user_id: int, db: SessionDep) -> PeerProfile:
    """Return the minimal profile card shown at the top of a thread."""
    return PeerProfile.model_validate(_get_user_or_404(db, user_id))
