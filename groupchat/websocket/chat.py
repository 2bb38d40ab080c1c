"""
Live connection endpoint (``/chathub``).

One WebSocket per client session. The client authenticates with the
``access_token`` query parameter, then sends frames ``{"type": <method>, ...}``
which are routed through a handler table. Authorization problems are logged
and the action dropped; only malformed frames get an ``Error`` frame back.
"""
import json
import logging
from typing import Any, Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from groupchat.core.config import settings
from groupchat.models.user import UserStatus
from groupchat.schemas.message import MessageDeletedEvent
from groupchat.services.auth_service import AuthService
from groupchat.services.membership import MembershipAuthority
from groupchat.services.presence_service import PresenceService
from .hub import ChatHub, Connection, room_name

logger = logging.getLogger(__name__)

# Ids are 64-bit signed integers in the store
MAX_ID = 2 ** 63 - 1


def parse_id(value: Any) -> int:
    """Frame id as an int; ValueError for anything the store could not hold"""
    if isinstance(value, bool):
        raise ValueError(f"invalid id {value!r}")
    number = int(value)
    if not 1 <= number <= MAX_ID:
        raise ValueError(f"id out of range: {number}")
    return number


class ChatHubHandler:
    def __init__(self, hub: ChatHub, session_factory: async_sessionmaker[AsyncSession]):
        self.hub = hub
        self.session_factory = session_factory
        self.handlers: Dict[str, Callable] = {
            "JoinGroup": self._handle_join_group,
            "LeaveGroup": self._handle_leave_group,
            "SendMessageToGroup": self._handle_send_message,
            "NotifyMessageEdited": self._handle_message_edited,
            "NotifyMessageDeleted": self._handle_message_deleted,
            "SendTypingIndicator": self._handle_typing,
            "UpdateStatus": self._handle_update_status,
            "ping": self._handle_ping,
        }

    async def handle_connection(self, websocket: WebSocket, token: Optional[str]):
        """🔌 Authenticate, register with the hub and pump frames until close"""
        async with self.session_factory() as db:
            user = await AuthService(db).authenticate_access_token(token)
            if user is None:
                logger.warning("🔐 Rejected live connection with an invalid token")
                await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
                return
            user_id, username = user.id, user.username

        await websocket.accept()
        connection = Connection(websocket=websocket, user_id=user_id, username=username)

        async with self.session_factory() as db:
            await PresenceService(db).set_online(user_id)
        await self.hub.on_connect(connection)

        try:
            await self._message_loop(connection)
        except WebSocketDisconnect:
            logger.info(f"🔌 User {username} (ID: {user_id}) disconnected")
        finally:
            await self.hub.on_disconnect(connection)
            async with self.session_factory() as db:
                await PresenceService(db).set_offline(user_id)

    async def _message_loop(self, connection: Connection):
        while True:
            data = await connection.websocket.receive_text()
            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                await self._send_error(connection, "Invalid JSON format")
                continue
            if not isinstance(frame, dict):
                await self._send_error(connection, "Invalid frame")
                continue

            await self.dispatch(connection, frame)

    async def dispatch(self, connection: Connection, frame: Dict[str, Any]):
        """📨 Route one decoded frame to its handler"""
        frame_type = frame.get("type")
        handler = self.handlers.get(frame_type)
        if handler is None:
            logger.warning(f"🤷 Unknown frame type: {frame_type} from user {connection.user_id}")
            await self._send_error(connection, f"Unknown message type: {frame_type}")
            return

        try:
            await handler(connection, frame)
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            logger.warning(f"⚠️ Malformed {frame_type} frame from user {connection.user_id}: {e}")
            await self._send_error(connection, f"Invalid {frame_type} payload")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_join_group(self, connection: Connection, frame: Dict[str, Any]):
        group_id = parse_id(frame["group_id"])

        if settings.VERIFY_ROOM_MEMBERSHIP:
            async with self.session_factory() as db:
                is_member = await MembershipAuthority(db).is_member(connection.user_id, group_id)
            if not is_member:
                logger.warning(f"🚫 User {connection.user_id} tried to join group {group_id} without membership")
                return

        await self.hub.join_room(connection, group_id)

    async def _handle_leave_group(self, connection: Connection, frame: Dict[str, Any]):
        await self.hub.leave_room(connection, parse_id(frame["group_id"]))

    async def _handle_send_message(self, connection: Connection, frame: Dict[str, Any]):
        group_id = parse_id(frame["group_id"])
        message = frame["message"]
        if not self._in_room(connection, group_id, "SendMessageToGroup"):
            return

        # The payload must be authored by the connection that relays it
        if not isinstance(message, dict) or message.get("user_id") != connection.user_id:
            logger.warning(f"🚫 User {connection.user_id} relayed a message for another sender to group {group_id}")
            return

        await self.hub.broadcast(group_id, "ReceiveMessage", message)

    async def _handle_message_edited(self, connection: Connection, frame: Dict[str, Any]):
        group_id = parse_id(frame["group_id"])
        message = frame["message"]
        if not self._in_room(connection, group_id, "NotifyMessageEdited"):
            return
        await self.hub.broadcast(group_id, "MessageEdited", message)

    async def _handle_message_deleted(self, connection: Connection, frame: Dict[str, Any]):
        event = MessageDeletedEvent(message_id=parse_id(frame["message_id"]), group_id=parse_id(frame["group_id"]))
        if not self._in_room(connection, event.group_id, "NotifyMessageDeleted"):
            return
        await self.hub.broadcast(event.group_id, "MessageDeleted", event)

    async def _handle_typing(self, connection: Connection, frame: Dict[str, Any]):
        group_id = parse_id(frame["group_id"])
        if not self._in_room(connection, group_id, "SendTypingIndicator"):
            return
        await self.hub.broadcast_except(group_id, "UserTyping", {
            "user_id": connection.user_id,
            "group_id": group_id,
            "is_typing": bool(frame.get("is_typing", False)),
        }, exclude_connection_id=connection.connection_id)

    async def _handle_update_status(self, connection: Connection, frame: Dict[str, Any]):
        try:
            new_status = UserStatus(frame.get("status"))
        except ValueError:
            logger.warning(f"🤷 User {connection.user_id} sent unknown status {frame.get('status')!r}")
            return

        async with self.session_factory() as db:
            await PresenceService(db).update_status(connection.user_id, new_status)

        await self.hub.broadcast_global("UserStatusChanged", {
            "user_id": connection.user_id,
            "status": new_status.value,
        })

    async def _handle_ping(self, connection: Connection, frame: Dict[str, Any]):
        await self.hub.send_to_connection(connection, "pong", {})

    def _in_room(self, connection: Connection, group_id: int, frame_type: str) -> bool:
        # Relays only reach rooms the sender was let into and not evicted from
        if room_name(group_id) in connection.rooms:
            return True
        logger.warning(f"🚫 User {connection.user_id} sent {frame_type} to group {group_id} outside its room")
        return False

    async def _send_error(self, connection: Connection, message: str):
        await self.hub.send_to_connection(connection, "Error", {"message": message})
