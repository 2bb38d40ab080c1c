import json

import pytest

from conftest import FakeWebSocket

from groupchat.core.config import settings
from groupchat.core.security import create_access_token
from groupchat.models import User, UserStatus
from groupchat.websocket.chat import ChatHubHandler


@pytest.fixture
def handler(hub, session_factory):
    return ChatHubHandler(hub, session_factory)


async def test_invalid_token_closes_with_policy_violation(handler, hub):
    websocket = FakeWebSocket()

    await handler.handle_connection(websocket, "not-a-token")

    assert websocket.closed
    assert websocket.close_code == 1008
    assert not websocket.accepted
    assert hub.get_connection_stats()["total_connections"] == 0


async def test_connection_lifecycle_updates_presence(handler, hub, db, make_user):
    user_id = await make_user("alice")
    websocket = FakeWebSocket(incoming=[json.dumps({"type": "ping"})])

    await handler.handle_connection(websocket, create_access_token({"sub": str(user_id)}))

    assert websocket.accepted
    assert websocket.events("UserOnline")[0]["data"] == {"user_id": user_id, "username": "alice"}
    assert websocket.events("pong") == [{"type": "pong", "data": {}}]
    # Cleaned up once the client went away
    assert hub.get_connection_stats()["total_connections"] == 0
    user = await db.get(User, user_id, populate_existing=True)
    assert user.status == UserStatus.OFFLINE
    assert user.last_active_at is not None


async def test_join_group_requires_membership(handler, hub, make_user, make_group, connect):
    owner = await make_user("owner")
    stranger = await make_user("stranger")
    group_id, _ = await make_group(owner)

    member_connection = await connect(owner)
    stranger_connection = await connect(stranger)
    await handler.dispatch(member_connection, {"type": "JoinGroup", "group_id": group_id})
    await handler.dispatch(stranger_connection, {"type": "JoinGroup", "group_id": group_id})

    assert hub.get_room_connections(group_id) == [member_connection]
    assert stranger_connection.websocket.events("Error") == []


async def test_join_group_unchecked_when_verification_disabled(handler, hub, make_user, make_group, connect, monkeypatch):
    owner = await make_user("owner")
    stranger = await make_user("stranger")
    group_id, _ = await make_group(owner)
    monkeypatch.setattr(settings, "VERIFY_ROOM_MEMBERSHIP", False)

    connection = await connect(stranger)
    await handler.dispatch(connection, {"type": "JoinGroup", "group_id": group_id})

    assert hub.get_room_connections(group_id) == [connection]


async def test_forged_sender_is_dropped(handler, hub, connect):
    sender = await connect(1)
    listener = await connect(2)
    await hub.join_room(sender, 5)
    await hub.join_room(listener, 5)

    await handler.dispatch(sender, {"type": "SendMessageToGroup", "group_id": 5, "message": {"user_id": 2, "content": "x"}})
    assert listener.websocket.events("ReceiveMessage") == []

    await handler.dispatch(sender, {"type": "SendMessageToGroup", "group_id": 5, "message": {"user_id": 1, "content": "ok"}})
    assert listener.websocket.events("ReceiveMessage")[0]["data"]["content"] == "ok"


async def test_typing_indicator_skips_sender(handler, hub, connect):
    sender = await connect(1)
    listener = await connect(2)
    await hub.join_room(sender, 5)
    await hub.join_room(listener, 5)

    await handler.dispatch(sender, {"type": "SendTypingIndicator", "group_id": 5, "is_typing": True})

    assert sender.websocket.events("UserTyping") == []
    assert listener.websocket.events("UserTyping")[0]["data"] == {"user_id": 1, "group_id": 5, "is_typing": True}


async def test_edit_and_delete_notifications(handler, hub, connect):
    sender = await connect(1)
    listener = await connect(2)
    await hub.join_room(sender, 5)
    await hub.join_room(listener, 5)

    await handler.dispatch(sender, {"type": "NotifyMessageEdited", "group_id": 5, "message": {"id": 3, "content": "v2"}})
    await handler.dispatch(sender, {"type": "NotifyMessageDeleted", "group_id": 5, "message_id": 3})

    assert listener.websocket.events("MessageEdited")[0]["data"] == {"id": 3, "content": "v2"}
    assert listener.websocket.events("MessageDeleted")[0]["data"] == {"message_id": 3, "group_id": 5}


def _relay_frames(user_id, group_id):
    return [
        {"type": "SendMessageToGroup", "group_id": group_id, "message": {"user_id": user_id, "content": "psst"}},
        {"type": "NotifyMessageEdited", "group_id": group_id, "message": {"id": 1, "content": "forged"}},
        {"type": "NotifyMessageDeleted", "group_id": group_id, "message_id": 1},
        {"type": "SendTypingIndicator", "group_id": group_id, "is_typing": True},
    ]


def _relayed(websocket):
    return [f for f in websocket.sent if f["type"] in ("ReceiveMessage", "MessageEdited", "MessageDeleted", "UserTyping")]


async def test_relays_from_outside_the_room_are_dropped(handler, hub, make_user, make_group, connect):
    owner = await make_user("owner")
    stranger = await make_user("stranger")
    group_id, _ = await make_group(owner, is_private=True)

    listener = await connect(owner)
    intruder = await connect(stranger)
    await handler.dispatch(listener, {"type": "JoinGroup", "group_id": group_id})
    await handler.dispatch(intruder, {"type": "JoinGroup", "group_id": group_id})
    assert hub.get_room_connections(group_id) == [listener]

    for frame in _relay_frames(stranger, group_id):
        await handler.dispatch(intruder, frame)

    assert _relayed(listener.websocket) == []
    assert intruder.websocket.events("Error") == []


async def test_evicted_connection_cannot_relay(handler, hub, make_user, make_group, join, connect):
    owner = await make_user("owner")
    member = await make_user("member")
    group_id, _ = await make_group(owner)
    await join(member, group_id=group_id)

    listener = await connect(owner)
    evicted = await connect(member)
    await handler.dispatch(listener, {"type": "JoinGroup", "group_id": group_id})
    await handler.dispatch(evicted, {"type": "JoinGroup", "group_id": group_id})
    await hub.evict_user(member, group_id)

    for frame in _relay_frames(member, group_id):
        await handler.dispatch(evicted, frame)

    assert _relayed(listener.websocket) == []


async def test_out_of_range_id_gets_error_and_connection_survives(handler, connect):
    connection = await connect(1)

    await handler.dispatch(connection, {"type": "JoinGroup", "group_id": 10 ** 30})
    await handler.dispatch(connection, {"type": "NotifyMessageDeleted", "group_id": 5, "message_id": -1})
    await handler.dispatch(connection, {"type": "ping"})

    errors = connection.websocket.events("Error")
    assert [e["data"]["message"] for e in errors] == ["Invalid JoinGroup payload", "Invalid NotifyMessageDeleted payload"]
    assert connection.websocket.events("pong") == [{"type": "pong", "data": {}}]


async def test_leave_group(handler, hub, connect):
    connection = await connect(1)
    await hub.join_room(connection, 5)

    await handler.dispatch(connection, {"type": "LeaveGroup", "group_id": 5})

    assert hub.get_room_connections(5) == []


async def test_update_status_persists_and_broadcasts(handler, hub, db, make_user, connect):
    user_id = await make_user("alice")
    connection = await connect(user_id)
    watcher = await connect(999)

    await handler.dispatch(connection, {"type": "UpdateStatus", "status": "Busy"})
    await handler.dispatch(connection, {"type": "UpdateStatus", "status": "Sleeping"})

    changed = watcher.websocket.events("UserStatusChanged")
    assert changed == [{"type": "UserStatusChanged", "data": {"user_id": user_id, "status": "Busy"}}]
    user = await db.get(User, user_id, populate_existing=True)
    assert user.status == UserStatus.BUSY


async def test_unknown_frame_gets_error(handler, connect):
    connection = await connect(1)

    await handler.dispatch(connection, {"type": "Teleport"})
    await handler.dispatch(connection, {"type": "JoinGroup"})

    errors = connection.websocket.events("Error")
    assert len(errors) == 2
    assert "Teleport" in errors[0]["data"]["message"]


async def test_invalid_json_gets_error(handler, hub, make_user):
    user_id = await make_user("alice")
    websocket = FakeWebSocket(incoming=["{not json"])

    await handler.handle_connection(websocket, create_access_token({"sub": str(user_id)}))

    assert websocket.events("Error")[0]["data"] == {"message": "Invalid JSON format"}
