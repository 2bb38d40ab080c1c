import asyncio
import os

# Keep the application's own engine off Postgres while tests import it
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
from fastapi import WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from groupchat.core.security import get_password_hash
from groupchat.db.database import Base
from groupchat.models import User, UserStatus
from groupchat.services.group_service import GroupService
from groupchat.utils.timezone import utcnow
from groupchat.websocket.hub import ChatHub, Connection

PASSWORD = "secret123"
HASHED_PASSWORD = get_password_hash(PASSWORD)


class FakeWebSocket:
    """Records every frame pushed to it; replays scripted incoming text"""

    def __init__(self, incoming=None):
        self.sent = []
        self.incoming = list(incoming or [])
        self.accepted = False
        self.closed = False
        self.close_code = None

    async def accept(self):
        self.accepted = True

    async def send_json(self, data):
        self.sent.append(data)

    async def receive_text(self):
        if self.incoming:
            return self.incoming.pop(0)
        raise WebSocketDisconnect(code=1000)

    async def close(self, code=1000):
        self.closed = True
        self.close_code = code

    def events(self, event_type=None):
        return [f for f in self.sent if event_type is None or f["type"] == event_type]


class BrokenWebSocket(FakeWebSocket):
    async def send_json(self, data):
        raise RuntimeError("connection reset")


class SlowWebSocket(FakeWebSocket):
    async def send_json(self, data):
        await asyncio.sleep(10)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def hub():
    return ChatHub(send_timeout=0.2)


@pytest.fixture
def make_user(db):
    """Create a user and return its id"""

    async def _make(username: str) -> int:
        user = User(
            username=username,
            email=f"{username}@example.com",
            hashed_password=HASHED_PASSWORD,
            display_name=None,
            avatar_url=None,
            status=UserStatus.OFFLINE,
            last_active_at=None,
            created_at=utcnow(),
        )
        db.add(user)
        await db.commit()
        return user.id

    return _make


@pytest.fixture
def make_group(db, hub):
    """Create a group owned by ``creator_id`` and return (group_id, invite_code)"""

    async def _make(creator_id: int, name: str = "General", is_private: bool = False):
        result = await GroupService(db, hub).create(name, None, is_private, creator_id)
        assert result.is_success, result.message
        return result.data.id, result.data.invite_code

    return _make


@pytest.fixture
def join(db, hub):
    """Join a group and return the service result"""

    async def _join(user_id: int, group_id=None, invite_code=None):
        return await GroupService(db, hub).join(user_id, group_id=group_id, invite_code=invite_code)

    return _join


@pytest.fixture
def connect(hub):
    """Register a fake connection with the hub"""

    async def _connect(user_id: int, username: str = "", websocket=None) -> Connection:
        connection = Connection(websocket=websocket or FakeWebSocket(), user_id=user_id, username=username)
        await hub.on_connect(connection)
        return connection

    return _connect
