# src/blogx_chat/api/v1/endpoints/messages.py
"""Direct message endpoints; the REST fallback for the realtime relay."""

from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, HTTPException, Query, status

from blogx_chat.api.v1.dependencies import CurrentUserDep, MessagingServiceDep
from blogx_chat.core.settings import settings
from blogx_chat.schemas.direct_message import (
    ConversationSummary,
    DeleteResponse,
    MessageCreate,
    MessageResponse,
    PeerProfile,
    ReadResponse,
)
from blogx_chat.services.errors import (
    MessagePermissionError,
    MessagePersistenceError,
    MessageValidationError,
    MessagingError,
)

router = APIRouter(prefix="/messages", tags=["messages"])


def _raise_http(exc: MessagingError) -> NoReturn:
    """Translate a messaging failure into the matching HTTP error."""
    if isinstance(exc, MessageValidationError):
        code = status.HTTP_404_NOT_FOUND if exc.not_found else status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, MessagePermissionError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, MessagePersistenceError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    raise HTTPException(status_code=code, detail=str(exc)) from exc


@router.get("/conversations", response_model=list[ConversationSummary])
async def list_conversations(
    current_user: CurrentUserDep,
    service: MessagingServiceDep,
) -> list[ConversationSummary]:
    """List the current user's conversations, most recent first."""
    rows = await service.list_conversations(current_user.id)
    return [
        ConversationSummary(
            peer_id=row.peer_id,
            peer=PeerProfile.model_validate(row.peer) if row.peer is not None else None,
            last_message=MessageResponse.from_model(row.last_message),
            unread_count=row.unread_count,
        )
        for row in rows
    ]


@router.get("/{user_id}", response_model=list[MessageResponse])
async def get_thread(
    user_id: int,
    current_user: CurrentUserDep,
    service: MessagingServiceDep,
    limit: int = Query(settings.message_page_size, ge=1, le=settings.message_page_max),
    offset: int = Query(0, ge=0),
) -> list[MessageResponse]:
    """Fetch the thread with ``user_id`` oldest first and mark it read."""
    try:
        messages = await service.open_thread(current_user.id, user_id, limit, offset)
    except MessagingError as exc:
        _raise_http(exc)
    return [MessageResponse.from_model(message) for message in messages]


@router.post("/{user_id}", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    user_id: int,
    message_data: MessageCreate,
    current_user: CurrentUserDep,
    service: MessagingServiceDep,
) -> MessageResponse:
    """Send a direct message to ``user_id``.

    Live delivery, the sender echo and the notification happen exactly as
    they do for a message sent over the socket.
    """
    try:
        result = await service.send(
            current_user.id,
            user_id,
            message_data.content,
            kind=message_data.message_type,
            shared_post_id=message_data.shared_post_id,
            shared_preview=message_data.shared_post_preview,
            client_id=message_data.client_id,
        )
    except MessagingError as exc:
        _raise_http(exc)
    return result.response


@router.put("/{message_id}/read", response_model=ReadResponse)
async def mark_message_read(
    message_id: int,
    current_user: CurrentUserDep,
    service: MessagingServiceDep,
) -> ReadResponse:
    """Mark one received message as read."""
    try:
        found = await service.mark_read(current_user.id, message_id)
    except MessagingError as exc:
        _raise_http(exc)
    if not found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")
    return ReadResponse(updated=1)


@router.put("/{user_id}/read-all", response_model=ReadResponse)
async def mark_thread_read(
    user_id: int,
    current_user: CurrentUserDep,
    service: MessagingServiceDep,
) -> ReadResponse:
    """Mark everything ``user_id`` sent to the current user as read."""
    try:
        updated = await service.mark_all_read(current_user.id, user_id)
    except MessagingError as exc:
        _raise_http(exc)
    return ReadResponse(updated=updated)


@router.delete("/conversation/{user_id}", response_model=DeleteResponse)
async def delete_conversation(
    user_id: int,
    current_user: CurrentUserDep,
    service: MessagingServiceDep,
) -> DeleteResponse:
    """Delete the whole thread with ``user_id`` for both participants."""
    try:
        deleted = await service.delete_conversation(current_user.id, user_id)
    except MessagingError as exc:
        _raise_http(exc)
    return DeleteResponse(deleted=deleted)


@router.delete("/{message_id}", response_model=DeleteResponse)
async def delete_message(
    message_id: int,
    current_user: CurrentUserDep,
    service: MessagingServiceDep,
) -> DeleteResponse:
    """Delete a message the current user sent; deleting twice succeeds."""
    try:
        deleted = await service.delete_message(current_user.id, message_id)
    except MessagingError as exc:
        _raise_http(exc)
    return DeleteResponse(deleted=deleted)
