"""Tests for the message relay, driven through in-memory channels."""

from __future__ import annotations

import json
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from blogx_chat.core.security import create_access_token
from blogx_chat.models import DirectMessage
from blogx_chat.schemas.events import RelayEvent
from blogx_chat.services.hooks import HookTopic
from blogx_chat.services.relay import MessageRelay


class RecordingChannel:
    """Stands in for a WebSocket-backed channel."""

    def __init__(self, *, open_: bool = True) -> None:
        self.channel_id = uuid.uuid4().hex
        self.identity: int | None = None
        self.events: list[RelayEvent] = []
        self.open = open_

    @property
    def identified(self) -> bool:
        return self.identity is not None

    async def send_event(self, event: RelayEvent) -> bool:
        if not self.open:
            return False
        # Round-trip through the wire format to catch serialization errors.
        json.loads(event.to_wire())
        self.events.append(event)
        return True

    def types(self) -> list[str]:
        return [event.type for event in self.events]

    def of_type(self, event_type: str) -> list[RelayEvent]:
        return [event for event in self.events if event.type == event_type]


def _count(db_session) -> int:
    return db_session.execute(select(func.count(DirectMessage.id))).scalar_one()


def _frame(**payload) -> str:
    return json.dumps(payload)


async def _identified(relay, repository, user_id: int) -> RecordingChannel:
    channel = RecordingChannel()
    await relay.handle(channel, _frame(type="identity", userId=user_id), repository)
    assert channel.types()[-1] == "identified"
    channel.events.clear()
    return channel


@pytest.mark.asyncio
async def test_open_sends_welcome(relay):
    channel = RecordingChannel()

    await relay.open(channel)

    assert channel.types() == ["welcome"]
    assert channel.identity is None


@pytest.mark.asyncio
async def test_identity_handshake_registers_channel(relay, repository, test_user):
    channel = RecordingChannel()

    await relay.handle(channel, _frame(type="identity", userId=test_user.id), repository)

    assert channel.identity == test_user.id
    assert relay.registry.lookup(test_user.id) is channel
    (ack,) = channel.events
    assert ack.type == "identified"
    assert ack.user_id == test_user.id


@pytest.mark.asyncio
async def test_identity_for_unknown_user_is_rejected(relay, repository):
    channel = RecordingChannel()

    await relay.handle(channel, _frame(type="identity", userId=4040), repository)

    assert channel.identity is None
    assert len(relay.registry) == 0
    assert channel.events[0].code == "unknown_user"


@pytest.mark.asyncio
async def test_identity_token_must_match_user(repository, test_user, other_user):
    relay = MessageRelay(require_token=True)
    channel = RecordingChannel()

    await relay.handle(channel, _frame(type="identity", userId=test_user.id), repository)
    assert channel.events[-1].code == "unauthorized"

    forged = create_access_token(other_user.id)
    await relay.handle(
        channel, _frame(type="identity", userId=test_user.id, token=forged), repository
    )
    assert channel.events[-1].code == "unauthorized"
    assert channel.identity is None

    token = create_access_token(test_user.id)
    await relay.handle(
        channel, _frame(type="identity", userId=test_user.id, token=token), repository
    )
    assert channel.events[-1].type == "identified"
    assert relay.registry.lookup(test_user.id) is channel


@pytest.mark.asyncio
async def test_malformed_frame_reports_error(relay, repository):
    channel = RecordingChannel()

    await relay.handle(channel, "not json at all", repository)
    await relay.handle(channel, _frame(type="launch_rockets"), repository)
    await relay.handle(channel, _frame(type="direct_message", to=2), repository)

    assert channel.types() == ["error", "error", "error"]
    assert {event.code for event in channel.events} == {"bad_event"}


@pytest.mark.asyncio
async def test_direct_message_requires_identified_channel(relay, repository, db_session, test_user, other_user):
    channel = RecordingChannel()

    await relay.handle(
        channel,
        _frame(type="direct_message", **{"from": test_user.id}, to=other_user.id, content="hi", clientId="c1"),
        repository,
    )

    (error,) = channel.events
    assert error.code == "not_identified"
    assert error.client_id == "c1"
    assert _count(db_session) == 0


@pytest.mark.asyncio
async def test_direct_message_sender_must_match_identity(relay, repository, db_session, test_user, other_user):
    channel = await _identified(relay, repository, test_user.id)

    await relay.handle(
        channel,
        _frame(type="direct_message", **{"from": other_user.id}, to=test_user.id, content="spoof"),
        repository,
    )

    assert channel.events[0].code == "forbidden"
    assert _count(db_session) == 0


@pytest.mark.asyncio
async def test_direct_message_to_online_receiver(relay, repository, db_session, test_user, other_user):
    sender = await _identified(relay, repository, test_user.id)
    receiver = await _identified(relay, repository, other_user.id)

    await relay.handle(
        sender,
        _frame(type="direct_message", **{"from": test_user.id}, to=other_user.id, content="hello", clientId="c-1"),
        repository,
    )

    assert _count(db_session) == 1
    assert receiver.types() == ["new_message", "notification"]
    delivered = receiver.events[0]
    assert delivered.is_sender is False
    assert delivered.message.sender_id == test_user.id
    assert delivered.message.content == "hello"

    assert sender.types() == ["new_message", "message_sent"]
    echo, ack = sender.events
    assert echo.is_sender is True
    assert echo.message.id == delivered.message.id
    assert echo.message.client_id == "c-1"
    assert ack.message_id == delivered.message.id
    assert ack.client_id == "c-1"
    assert ack.delivered is True


@pytest.mark.asyncio
async def test_direct_message_to_offline_receiver_is_stored_once(relay, repository, db_session, test_user, other_user):
    sender = await _identified(relay, repository, test_user.id)

    await relay.handle(
        sender,
        _frame(type="direct_message", **{"from": test_user.id}, to=other_user.id, content="later"),
        repository,
    )

    assert _count(db_session) == 1
    ack = sender.of_type("message_sent")[0]
    assert ack.delivered is False

    # Nothing is replayed on connect; the stored message is fetched instead.
    receiver = await _identified(relay, repository, other_user.id)
    assert receiver.events == []
    assert [m.content for m in repository.list_messages(other_user.id, test_user.id)] == ["later"]


@pytest.mark.asyncio
async def test_broken_receiver_channel_degrades_silently(relay, repository, db_session, test_user, other_user):
    sender = await _identified(relay, repository, test_user.id)
    receiver = await _identified(relay, repository, other_user.id)
    receiver.open = False

    await relay.handle(
        sender,
        _frame(type="direct_message", **{"from": test_user.id}, to=other_user.id, content="into the void"),
        repository,
    )

    assert _count(db_session) == 1
    assert sender.of_type("error") == []
    assert sender.of_type("message_sent")[0].delivered is False


@pytest.mark.asyncio
async def test_repeated_client_id_is_persisted_once(relay, repository, db_session, test_user, other_user):
    sender = await _identified(relay, repository, test_user.id)
    receiver = await _identified(relay, repository, other_user.id)
    frame = _frame(
        type="direct_message", **{"from": test_user.id}, to=other_user.id, content="once", clientId="same"
    )

    await relay.handle(sender, frame, repository)
    await relay.handle(sender, frame, repository)

    assert _count(db_session) == 1
    acks = sender.of_type("message_sent")
    assert len(acks) == 2
    assert acks[0].message_id == acks[1].message_id
    assert len(receiver.of_type("new_message")) == 1


@pytest.mark.asyncio
async def test_validation_error_only_reaches_sender(relay, repository, db_session, test_user, other_user):
    sender = await _identified(relay, repository, test_user.id)
    receiver = await _identified(relay, repository, other_user.id)

    await relay.handle(
        sender,
        _frame(type="direct_message", **{"from": test_user.id}, to=other_user.id, content="   ", clientId="blank"),
        repository,
    )

    (error,) = sender.events
    assert error.type == "error"
    assert error.code == "validation_error"
    assert error.client_id == "blank"
    assert receiver.events == []
    assert _count(db_session) == 0


@pytest.mark.asyncio
async def test_storage_failure_reports_error_and_keeps_channel(
    relay, repository, db_session, test_user, other_user, mocker
):
    sender = await _identified(relay, repository, test_user.id)
    receiver = await _identified(relay, repository, other_user.id)
    failing = mocker.patch.object(
        db_session,
        "scalars",
        side_effect=OperationalError("SELECT", {}, Exception("database is locked")),
    )
    frame = _frame(type="direct_message", **{"from": test_user.id}, to=other_user.id, content="hi", clientId="c-1")

    await relay.handle(sender, frame, repository)

    (error,) = sender.events
    assert error.type == "error"
    assert error.code == "persistence_error"
    assert error.client_id == "c-1"
    assert receiver.events == []
    assert relay.registry.lookup(test_user.id) is sender

    mocker.stop(failing)
    sender.events.clear()
    await relay.handle(sender, frame, repository)

    assert sender.types() == ["new_message", "message_sent"]
    assert _count(db_session) == 1


@pytest.mark.asyncio
async def test_unwrapped_database_error_is_reported_and_rolled_back(
    relay, repository, db_session, test_user, other_user, mocker
):
    sender = await _identified(relay, repository, test_user.id)
    mocker.patch.object(
        repository,
        "user_exists",
        side_effect=OperationalError("SELECT", {}, Exception("connection reset")),
    )
    rollback = mocker.spy(db_session, "rollback")

    await relay.handle(
        sender,
        _frame(type="direct_message", **{"from": test_user.id}, to=other_user.id, content="hi", clientId="c-2"),
        repository,
    )

    (error,) = sender.events
    assert error.code == "persistence_error"
    assert error.client_id == "c-2"
    assert rollback.call_count == 1
    assert _count(db_session) == 0


@pytest.mark.asyncio
async def test_message_to_unknown_user_is_rejected(relay, repository, db_session, test_user):
    sender = await _identified(relay, repository, test_user.id)

    await relay.handle(
        sender,
        _frame(type="direct_message", **{"from": test_user.id}, to=777777, content="anyone?"),
        repository,
    )

    assert sender.events[0].code == "validation_error"
    assert _count(db_session) == 0


@pytest.mark.asyncio
async def test_self_message_is_rejected_by_default(relay, repository, db_session, test_user):
    sender = await _identified(relay, repository, test_user.id)

    await relay.handle(
        sender,
        _frame(type="direct_message", **{"from": test_user.id}, to=test_user.id, content="note to self"),
        repository,
    )

    assert sender.events[0].type == "error"
    assert _count(db_session) == 0


@pytest.mark.asyncio
async def test_shared_post_without_preview_snapshots_post(relay, repository, test_user, other_user, test_post):
    sender = await _identified(relay, repository, test_user.id)

    await relay.handle(
        sender,
        _frame(
            type="direct_message",
            **{"from": test_user.id},
            to=other_user.id,
            content="worth a read",
            messageType="blog_share",
            sharedBlogId=test_post.id,
        ),
        repository,
    )

    echo = sender.of_type("new_message")[0]
    assert echo.message.message_type == "shared_post"
    assert echo.message.shared_post_id == test_post.id
    assert echo.message.shared_post_preview.title == test_post.title
    assert echo.message.shared_post_preview.image == test_post.image


@pytest.mark.asyncio
async def test_sequential_sends_arrive_in_order(relay, repository, test_user, other_user):
    sender = await _identified(relay, repository, test_user.id)
    receiver = await _identified(relay, repository, other_user.id)

    for index in range(5):
        await relay.handle(
            sender,
            _frame(type="direct_message", **{"from": test_user.id}, to=other_user.id, content=f"n{index}"),
            repository,
        )

    received = [event.message.content for event in receiver.of_type("new_message")]
    assert received == [f"n{index}" for index in range(5)]
    stored = repository.list_messages(test_user.id, other_user.id)
    assert [m.content for m in stored] == received


@pytest.mark.asyncio
async def test_typing_reaches_online_receiver(relay, repository, db_session, test_user, other_user):
    sender = await _identified(relay, repository, test_user.id)
    receiver = await _identified(relay, repository, other_user.id)

    await relay.handle(
        sender,
        _frame(type="typing", **{"from": test_user.id}, to=other_user.id, isTyping=True),
        repository,
    )
    await relay.handle(
        sender,
        _frame(type="typing_indicator", **{"from": test_user.id}, to=other_user.id, isTyping=False),
        repository,
    )

    assert receiver.types() == ["typing_indicator", "typing_indicator"]
    assert [event.is_typing for event in receiver.events] == [True, False]
    assert receiver.events[0].sender == test_user.id
    assert sender.events == []
    assert _count(db_session) == 0


@pytest.mark.asyncio
async def test_typing_to_offline_receiver_leaves_no_trace(relay, repository, db_session, test_user, other_user):
    sender = await _identified(relay, repository, test_user.id)

    await relay.handle(
        sender,
        _frame(type="typing", **{"from": test_user.id}, to=other_user.id, isTyping=True),
        repository,
    )

    assert sender.events == []
    assert _count(db_session) == 0

    receiver = await _identified(relay, repository, other_user.id)
    assert receiver.events == []


@pytest.mark.asyncio
async def test_typing_from_unidentified_channel_is_dropped(relay, repository, test_user, other_user):
    anonymous = RecordingChannel()
    receiver = await _identified(relay, repository, other_user.id)

    await relay.handle(
        anonymous,
        _frame(type="typing", **{"from": test_user.id}, to=other_user.id, isTyping=True),
        repository,
    )

    assert anonymous.events == []
    assert receiver.events == []


@pytest.mark.asyncio
async def test_stale_disconnect_keeps_new_channel(relay, repository, test_user):
    old = await _identified(relay, repository, test_user.id)
    new = await _identified(relay, repository, test_user.id)

    relay.disconnect(old)

    assert relay.registry.lookup(test_user.id) is new
    relay.disconnect(new)
    assert relay.registry.lookup(test_user.id) is None


@pytest.mark.asyncio
async def test_message_created_hook_fires_once(relay, repository, test_user, other_user):
    payloads: list[dict] = []

    async def on_created(payload: dict) -> None:
        payloads.append(payload)

    relay.hooks.subscribe(HookTopic.MESSAGE_CREATED, on_created)
    sender = await _identified(relay, repository, test_user.id)
    frame = _frame(type="direct_message", **{"from": test_user.id}, to=other_user.id, content="hook", clientId="h")

    await relay.handle(sender, frame, repository)
    await relay.handle(sender, frame, repository)

    assert len(payloads) == 1
    assert payloads[0]["message"]["content"] == "hook"
    assert payloads[0]["delivered"] is False


@pytest.mark.asyncio
async def test_publish_deletions_reach_both_parties(relay, repository, test_user, other_user):
    sender = await _identified(relay, repository, test_user.id)
    receiver = await _identified(relay, repository, other_user.id)

    await relay.publish_message_deleted(11, sender_id=test_user.id, receiver_id=other_user.id)
    await relay.publish_conversation_deleted(test_user.id, other_user.id, 4)

    assert sender.types() == ["message_deleted", "conversation_deleted"]
    assert receiver.types() == ["message_deleted", "conversation_deleted"]
    assert receiver.events[0].message_id == 11
    assert receiver.events[0].recipient_id == other_user.id
    assert sender.events[1].with_user == other_user.id
    assert receiver.events[1].with_user == test_user.id
    assert receiver.events[1].deleted_count == 4
