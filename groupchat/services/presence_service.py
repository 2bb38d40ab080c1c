from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from groupchat.models.user import User, UserStatus
from groupchat.utils.timezone import utcnow


class PresenceService:
    """Persisted user status; the hub announces it, this records it"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def set_online(self, user_id: int) -> Optional[User]:
        return await self.update_status(user_id, UserStatus.ONLINE)

    async def set_offline(self, user_id: int) -> Optional[User]:
        return await self.update_status(user_id, UserStatus.OFFLINE)

    async def update_status(self, user_id: int, status: UserStatus) -> Optional[User]:
        """Store the status and touch last activity"""
        user = await self.db.get(User, user_id)
        if user is None or user.is_deleted:
            return None

        user.status = status
        user.last_active_at = utcnow()
        await self.db.commit()
        return user

    async def get_online_users(self) -> List[User]:
        result = await self.db.execute(
            select(User)
            .where(User.status != UserStatus.OFFLINE, User.is_deleted == False)
            .order_by(User.username)
        )
        return list(result.scalars().all())
