# tests/test_events.py
"""Tests for relay event parsing and wire format."""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from blogx_chat.schemas.direct_message import MessageResponse, SharedPostPreview
from blogx_chat.schemas.events import (
    DirectMessageEvent,
    ErrorEvent,
    IdentityEvent,
    MessageSentEvent,
    NewMessageEvent,
    TypingEvent,
    TypingIndicatorEvent,
    parse_inbound,
    parse_outbound,
)


def test_parse_identity():
    event = parse_inbound('{"type": "identity", "userId": 5}')

    assert isinstance(event, IdentityEvent)
    assert event.user_id == 5
    assert event.token is None


def test_parse_direct_message_uses_wire_names():
    event = parse_inbound(
        json.dumps(
            {
                "type": "direct_message",
                "from": 1,
                "to": 2,
                "content": "hi",
                "messageType": "blog_share",
                "sharedBlogId": 9,
                "sharedBlogPreview": {"title": "Post", "excerpt": "Body"},
                "clientId": "abc",
            }
        )
    )

    assert isinstance(event, DirectMessageEvent)
    assert (event.sender, event.receiver) == (1, 2)
    assert event.message_type == "shared_post"
    assert event.shared_blog_id == 9
    assert event.shared_blog_preview.title == "Post"
    assert event.client_id == "abc"


def test_parse_typing_accepts_both_tags():
    first = parse_inbound('{"type": "typing", "from": 1, "to": 2, "isTyping": true}')
    second = parse_inbound('{"type": "typing_indicator", "from": 1, "to": 2, "isTyping": false}')

    assert isinstance(first, TypingEvent) and first.is_typing is True
    assert isinstance(second, TypingEvent) and second.is_typing is False


@pytest.mark.parametrize(
    "raw",
    [
        "{",
        '{"type": "unknown"}',
        '{"userId": 3}',
        '{"type": "identity", "userId": "abc"}',
        '{"type": "direct_message", "from": 1, "to": 2}',
    ],
)
def test_parse_inbound_rejects_malformed_frames(raw):
    with pytest.raises(ValidationError):
        parse_inbound(raw)


def test_outbound_wire_format_is_camel_case():
    event = MessageSentEvent(message_id=3, client_id="c", delivered=True)

    payload = json.loads(event.to_wire())

    assert payload["type"] == "message_sent"
    assert payload["messageId"] == 3
    assert payload["clientId"] == "c"
    assert payload["delivered"] is True


def test_typing_indicator_uses_from_on_the_wire():
    payload = json.loads(TypingIndicatorEvent(sender=4, is_typing=True).to_wire())

    assert payload == {"type": "typing_indicator", "from": 4, "isTyping": True}


def test_error_event_omits_missing_client_id():
    payload = json.loads(ErrorEvent(message="nope").to_wire())

    assert "clientId" not in payload
    assert payload["code"] == "error"


def test_new_message_survives_parse_outbound():
    message = MessageResponse(
        id=1,
        sender_id=2,
        receiver_id=3,
        content="hello",
        read=False,
        created_at=datetime(2026, 1, 1, tzinfo=UTC),
        message_type="text",
    )

    parsed = parse_outbound(NewMessageEvent(message=message, is_sender=True).to_wire())

    assert isinstance(parsed, NewMessageEvent)
    assert parsed.is_sender is True
    assert parsed.message.model_dump() == message.model_dump()


def test_nested_message_uses_camel_case_on_the_wire():
    message = MessageResponse(
        id=1,
        sender_id=2,
        receiver_id=3,
        content="hello",
        read=False,
        created_at=datetime(2026, 1, 1, tzinfo=UTC),
        message_type="shared_post",
        shared_post_id=9,
        shared_post_preview=SharedPostPreview(title="Post"),
        client_id="c-1",
    )

    payload = json.loads(NewMessageEvent(message=message).to_wire())["message"]

    assert payload["senderId"] == 2
    assert payload["receiverId"] == 3
    assert payload["messageType"] == "shared_post"
    assert payload["sharedPostId"] == 9
    assert payload["sharedPostPreview"]["title"] == "Post"
    assert payload["clientId"] == "c-1"
    assert "sender_id" not in payload
