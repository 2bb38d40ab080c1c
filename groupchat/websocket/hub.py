"""
Connection registry and fan-out hub.

Maps live connections to group rooms and pushes events to them. The hub is a
pure routing layer: it never touches the database, and room membership is
whatever the transport layer declares. Callers that need membership to follow
the membership table use ``evict_user`` / ``close_room`` after committing.

One ``ChatHub`` is built per running application (see ``main.create_app``),
so tests and multiple app instances each get an independent registry.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from fastapi.encoders import jsonable_encoder

from groupchat.core.config import settings

logger = logging.getLogger(__name__)


def room_name(group_id: int) -> str:
    return f"group:{group_id}"


@dataclass(eq=False)
class Connection:
    """One live client connection bound to an authenticated user"""
    websocket: Any
    user_id: int
    username: str = ""
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    rooms: Set[str] = field(default_factory=set)
    connected_at: float = field(default_factory=time.time)


class ChatHub:
    def __init__(self, send_timeout: Optional[float] = None):
        self.send_timeout = send_timeout if send_timeout is not None else settings.HUB_SEND_TIMEOUT_SECONDS
        # Guards every map below; never held across a network send
        self._lock = asyncio.Lock()
        # connection_id -> Connection
        self._connections: Dict[str, Connection] = {}
        # room name -> connection ids
        self._rooms: Dict[str, Set[str]] = {}
        # connection_id -> user_id, last writer wins per connection
        self._online_users: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def on_connect(self, connection: Connection) -> None:
        async with self._lock:
            self._connections[connection.connection_id] = connection
            self._online_users[connection.connection_id] = connection.user_id

        logger.info(f"🔗 Connected: user_id={connection.user_id}, connection={connection.connection_id}")
        self._log_connection_stats()

        await self.broadcast_global("UserOnline", {
            "user_id": connection.user_id,
            "username": connection.username,
        })

    async def on_disconnect(self, connection: Connection) -> None:
        """
        Forget the connection and announce the user offline.

        Presence is tracked per connection without reference counting, so
        ``UserOffline`` goes out even if the same user has other live
        connections.
        """
        async with self._lock:
            self._connections.pop(connection.connection_id, None)
            self._online_users.pop(connection.connection_id, None)
            for name in connection.rooms:
                self._discard_from_room(name, connection.connection_id)
            connection.rooms.clear()

        logger.info(f"🔌 Disconnected: user_id={connection.user_id}, connection={connection.connection_id}")
        self._log_connection_stats()

        await self.broadcast_global("UserOffline", {
            "user_id": connection.user_id,
            "username": connection.username,
        })

    # ------------------------------------------------------------------
    # Rooms
    # ------------------------------------------------------------------

    async def join_room(self, connection: Connection, group_id: int) -> bool:
        name = room_name(group_id)
        async with self._lock:
            if connection.connection_id not in self._connections:
                logger.warning(f"⚠️ Join of {name} from unregistered connection {connection.connection_id}")
                return False
            self._rooms.setdefault(name, set()).add(connection.connection_id)
            connection.rooms.add(name)

        logger.info(f"🚪 User {connection.user_id} joined {name} with connection {connection.connection_id}")

        # Everyone in the room hears about it, the joiner included
        await self.broadcast(group_id, "UserJoined", {
            "user_id": connection.user_id,
            "group_id": group_id,
        })
        return True

    async def leave_room(self, connection: Connection, group_id: int) -> bool:
        name = room_name(group_id)
        async with self._lock:
            was_member = connection.connection_id in self._rooms.get(name, ())
            self._discard_from_room(name, connection.connection_id)
            connection.rooms.discard(name)

        if not was_member:
            return False

        logger.info(f"🚪 User {connection.user_id} left {name} with connection {connection.connection_id}")
        await self.broadcast(group_id, "UserLeft", {
            "user_id": connection.user_id,
            "group_id": group_id,
        })
        return True

    async def evict_user(self, user_id: int, group_id: int) -> int:
        """Drop every connection of ``user_id`` from the room; returns how many"""
        name = room_name(group_id)
        async with self._lock:
            evicted = [
                self._connections[cid]
                for cid in list(self._rooms.get(name, ()))
                if cid in self._connections and self._connections[cid].user_id == user_id
            ]
            for connection in evicted:
                self._discard_from_room(name, connection.connection_id)
                connection.rooms.discard(name)

        if evicted:
            logger.info(f"🚫 Evicted user {user_id} from {name} ({len(evicted)} connections)")
            await self.broadcast(group_id, "UserLeft", {
                "user_id": user_id,
                "group_id": group_id,
            })
        return len(evicted)

    async def close_room(self, group_id: int) -> int:
        name = room_name(group_id)
        async with self._lock:
            connection_ids = self._rooms.pop(name, set())
            for cid in connection_ids:
                connection = self._connections.get(cid)
                if connection:
                    connection.rooms.discard(name)

        if connection_ids:
            logger.info(f"🧹 Closed {name} ({len(connection_ids)} connections)")
        return len(connection_ids)

    def _discard_from_room(self, name: str, connection_id: str) -> None:
        # Caller holds the lock
        members = self._rooms.get(name)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[name]

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def broadcast(self, group_id: int, event: str, payload: Any) -> int:
        """Push ``event`` to every connection in the group's room"""
        targets = await self._room_targets(group_id)
        return await self._deliver(targets, event, payload, scope=room_name(group_id))

    async def broadcast_except(self, group_id: int, event: str, payload: Any, exclude_connection_id: str) -> int:
        targets = await self._room_targets(group_id, exclude={exclude_connection_id})
        return await self._deliver(targets, event, payload, scope=room_name(group_id))

    async def broadcast_global(self, event: str, payload: Any) -> int:
        """Push to every live connection, regardless of rooms"""
        async with self._lock:
            targets = list(self._connections.values())
        return await self._deliver(targets, event, payload, scope="global")

    async def send_to_connection(self, connection: Connection, event: str, payload: Any) -> bool:
        return await self._deliver([connection], event, payload, scope=connection.connection_id) == 1

    async def _room_targets(self, group_id: int, exclude: Iterable[str] = ()) -> List[Connection]:
        excluded = set(exclude)
        async with self._lock:
            return [
                self._connections[cid]
                for cid in self._rooms.get(room_name(group_id), ())
                if cid in self._connections and cid not in excluded
            ]

    async def _deliver(self, targets: List[Connection], event: str, payload: Any, scope: str) -> int:
        if not targets:
            logger.debug(f"📤 No connections for {event} in {scope}")
            return 0

        frame = {"type": event, "data": jsonable_encoder(payload)}
        results = await asyncio.gather(*(self._safe_send(connection, frame) for connection in targets))
        sent_count = sum(1 for ok in results if ok)

        logger.info(f"📤 {event} sent to {sent_count}/{len(targets)} connections in {scope}")
        return sent_count

    async def _safe_send(self, connection: Connection, frame: dict) -> bool:
        # Best effort: failures are dropped, never retried. The transport's
        # disconnect notification is what removes a dead connection.
        try:
            await asyncio.wait_for(connection.websocket.send_json(frame), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"⏰ Send of {frame['type']} to connection {connection.connection_id} timed out")
        except Exception as e:
            logger.warning(f"⚠️ Send of {frame['type']} to connection {connection.connection_id} failed: {e}")
        return False

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_connected_users(self) -> Dict[str, int]:
        """Snapshot of connection_id -> user_id"""
        return dict(self._online_users)

    def get_room_connections(self, group_id: int) -> List[Connection]:
        return [
            self._connections[cid]
            for cid in self._rooms.get(room_name(group_id), ())
            if cid in self._connections
        ]

    def is_user_connected(self, user_id: int) -> bool:
        return user_id in self._online_users.values()

    def get_connection_stats(self) -> dict:
        return {
            "total_users": len(set(self._online_users.values())),
            "total_connections": len(self._connections),
            "active_rooms": len(self._rooms),
        }

    async def close_all(self) -> None:
        """Close every live connection; used at shutdown"""
        async with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
            self._rooms.clear()
            self._online_users.clear()

        for connection in connections:
            try:
                await connection.websocket.close()
            except Exception as e:
                logger.debug(f"Closing connection {connection.connection_id} failed: {e}")

    def _log_connection_stats(self):
        stats = self.get_connection_stats()
        logger.info(f"📊 Connections: users={stats['total_users']}, "
                    f"connections={stats['total_connections']}, rooms={stats['active_rooms']}")
