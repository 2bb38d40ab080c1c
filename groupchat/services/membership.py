"""
Membership authority: the single answer to "may user U do X in group G".

A membership counts when its row is not soft-deleted, not banned and, unless
asked otherwise, approved. Group creators are immune to every mutating
operation on their own row.
"""
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from groupchat.core.errors import ForbiddenError
from groupchat.models import Group, GroupMember, GroupRole

MODERATION_ROLES = (GroupRole.ADMIN, GroupRole.MODERATOR)


class MembershipAuthority:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_membership(self, user_id: int, group_id: int, include_pending: bool = False) -> Optional[GroupMember]:
        # Memberships of a deleted group no longer count
        stmt = (
            select(GroupMember)
            .join(Group, Group.id == GroupMember.group_id)
            .where(
                GroupMember.user_id == user_id,
                GroupMember.group_id == group_id,
                GroupMember.is_deleted == False,
                GroupMember.is_banned == False,
                Group.is_deleted == False,
            )
        )
        if not include_pending:
            stmt = stmt.where(GroupMember.is_approved == True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_role(self, user_id: int, group_id: int) -> Optional[GroupRole]:
        membership = await self.get_membership(user_id, group_id)
        return membership.role if membership else None

    async def is_member(self, user_id: int, group_id: int) -> bool:
        return await self.get_membership(user_id, group_id) is not None

    async def require_member(self, user_id: int, group_id: int) -> GroupMember:
        membership = await self.get_membership(user_id, group_id)
        if membership is None:
            raise ForbiddenError("You are not a member of this group", reason="not_a_member")
        return membership

    async def require_role(
        self,
        user_id: int,
        group_id: int,
        allowed_roles: Iterable[GroupRole],
        message: str = "Insufficient permissions",
    ) -> GroupMember:
        membership = await self.get_membership(user_id, group_id)
        if membership is None or membership.role not in tuple(allowed_roles):
            raise ForbiddenError(message, reason="insufficient_role")
        return membership


def can_remove(actor_role: GroupRole, target: GroupMember, group: Group) -> bool:
    """Admins remove anyone but the creator; Moderators remove anyone but Admins"""
    if target.user_id == group.created_by:
        return False
    if actor_role == GroupRole.ADMIN:
        return True
    if actor_role == GroupRole.MODERATOR:
        return target.role != GroupRole.ADMIN
    return False


def can_change_role(actor_role: GroupRole, target: GroupMember, group: Group) -> bool:
    if target.user_id == group.created_by:
        return False
    return actor_role == GroupRole.ADMIN
