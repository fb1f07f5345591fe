"""REST client for the messaging endpoints.

Used as the fallback path whenever the live channel cannot take a send, and
for everything the relay does not carry (thread history, conversation list,
presence).
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Literal

import httpx
from pydantic import TypeAdapter

from blogx_chat.schemas.direct_message import (
    ConversationSummary,
    DeleteResponse,
    MessageResponse,
    PeerProfile,
    ReadResponse,
    SharedPostPreview,
)
from blogx_chat.schemas.user import PresenceResponse

logger = logging.getLogger(__name__)

HTTP_BAD_REQUEST = 400

_messages_adapter = TypeAdapter(list[MessageResponse])
_conversations_adapter = TypeAdapter(list[ConversationSummary])


class MessagesApiError(RuntimeError):
    """Raised when a REST call fails or the server rejects it."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MessagesApi:
    """Thin async wrapper over ``/api/v1/messages`` and ``/api/v1/users``.

    The caller owns ``client``; its ``base_url`` must point at the server.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        token: str | None = None,
        prefix: str = "/api/v1",
    ) -> None:
        self._client = client
        self._token = token
        self._prefix = prefix.rstrip("/")

    def _headers(self) -> dict[str, str]:
        if self._token is None:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_data: Any | None = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method,
                f"{self._prefix}{path}",
                json=json_data,
                params=params,
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise MessagesApiError(f"Request failed: {exc}") from exc

        if response.status_code >= HTTP_BAD_REQUEST:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            raise MessagesApiError(str(detail), status_code=response.status_code)
        return response.json()

    async def send_message(
        self,
        receiver_id: int,
        content: str,
        *,
        message_type: Literal["text", "shared_post"] = "text",
        shared_post_id: int | None = None,
        shared_preview: SharedPostPreview | None = None,
        client_id: str | None = None,
    ) -> MessageResponse:
        """Persist a message through ``POST /messages/{receiver_id}``."""
        payload: dict[str, Any] = {
            "content": content,
            "message_type": message_type,
            "client_id": client_id,
        }
        if shared_post_id is not None:
            payload["shared_post_id"] = shared_post_id
        if shared_preview is not None:
            payload["shared_post_preview"] = shared_preview.model_dump()
        data = await self._request("POST", f"/messages/{receiver_id}", json_data=payload)
        return MessageResponse.model_validate(data)

    async def fetch_messages(
        self, peer_id: int, *, limit: int | None = None, offset: int = 0
    ) -> list[MessageResponse]:
        """Fetch the thread with ``peer_id``, oldest first."""
        params: dict[str, Any] = {"offset": offset}
        if limit is not None:
            params["limit"] = limit
        data = await self._request("GET", f"/messages/{peer_id}", params=params)
        return _messages_adapter.validate_python(data)

    async def list_conversations(self) -> list[ConversationSummary]:
        data = await self._request("GET", "/messages/conversations")
        return _conversations_adapter.validate_python(data)

    async def mark_read(self, message_id: int) -> ReadResponse:
        data = await self._request("PUT", f"/messages/{message_id}/read")
        return ReadResponse.model_validate(data)

    async def mark_all_read(self, peer_id: int) -> ReadResponse:
        data = await self._request("PUT", f"/messages/{peer_id}/read-all")
        return ReadResponse.model_validate(data)

    async def delete_message(self, message_id: int) -> DeleteResponse:
        data = await self._request("DELETE", f"/messages/{message_id}")
        return DeleteResponse.model_validate(data)

    async def delete_conversation(self, peer_id: int) -> DeleteResponse:
        data = await self._request("DELETE", f"/messages/conversation/{peer_id}")
        return DeleteResponse.model_validate(data)

    async def get_status(self, user_id: int) -> PresenceResponse:
        data = await self._request("GET", f"/users/{user_id}/status")
        return PresenceResponse.model_validate(data)

    async def get_profile(self, user_id: int) -> PeerProfile:
        data = await self._request("GET", f"/users/message/{user_id}")
        return PeerProfile.model_validate(data)
