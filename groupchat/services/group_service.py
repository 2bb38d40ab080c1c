"""
Group lifecycle: create, update, delete, join/leave and member administration.

Every mutation commits once. Operations that change who belongs to a group
tell the hub afterwards, so live delivery follows the membership table.
"""
import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from groupchat.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError, service_operation
from groupchat.core.security import generate_invite_code
from groupchat.models import Group, GroupMember, GroupRole, User
from groupchat.schemas.common import PagedResult
from groupchat.schemas.group import GroupMemberResponse, GroupResponse, InviteCodeResponse
from groupchat.services.membership import MODERATION_ROLES, MembershipAuthority, can_change_role, can_remove
from groupchat.services.pagination import offset_for, total_pages, validate_page
from groupchat.utils.timezone import utcnow
from groupchat.websocket.hub import ChatHub

logger = logging.getLogger(__name__)


class GroupService:
    def __init__(self, db: AsyncSession, hub: Optional[ChatHub] = None):
        self.db = db
        self.hub = hub
        self.membership = MembershipAuthority(db)

    @service_operation("Failed to create group")
    async def create(self, name: str, description: Optional[str], is_private: bool, creator_id: int):
        creator = await self.db.get(User, creator_id)
        if creator is None or creator.is_deleted:
            raise NotFoundError("User not found", reason="user_not_found")

        name = self._validate_name(name)
        now = utcnow()
        group = Group(
            name=name,
            description=description,
            is_private=is_private,
            created_by=creator_id,
            invite_code=await self._unique_invite_code() if is_private else None,
            created_at=now,
            updated_at=now,
        )
        self.db.add(group)
        await self.db.flush()

        # The creator is an implicit admin
        self.db.add(GroupMember(
            user_id=creator_id,
            group_id=group.id,
            role=GroupRole.ADMIN,
            is_approved=True,
            joined_at=now,
        ))
        await self.db.commit()

        logger.info(f"✅ Group {group.id} '{group.name}' created by user {creator_id}")
        return await self._to_response(group, show_invite_code=True), "Group created successfully"

    @service_operation("Failed to update group")
    async def update(
        self,
        group_id: int,
        caller_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_private: Optional[bool] = None,
    ):
        group = await self._get_group(group_id)
        await self.membership.require_role(
            caller_id, group_id, MODERATION_ROLES,
            message="Only admins and moderators can update the group",
        )

        if name is not None:
            group.name = self._validate_name(name)
        if description is not None:
            group.description = description
        if is_private is not None and is_private != group.is_private:
            group.is_private = is_private
            group.invite_code = await self._unique_invite_code() if is_private else None
        group.updated_at = utcnow()
        await self.db.commit()

        logger.info(f"✏️ Group {group_id} updated by user {caller_id}")
        return await self._to_response(group, show_invite_code=True), "Group updated successfully"

    @service_operation("Failed to delete group")
    async def delete(self, group_id: int, caller_id: int):
        group = await self._get_group(group_id)
        await self.membership.require_role(
            caller_id, group_id, (GroupRole.ADMIN,),
            message="Only admins can delete the group",
        )

        group.is_deleted = True
        group.updated_at = utcnow()
        await self.db.commit()

        logger.info(f"🗑️ Group {group_id} deleted by user {caller_id}")
        if self.hub is not None:
            await self.hub.close_room(group_id)
        return True, "Group deleted successfully"

    @service_operation("Failed to get group")
    async def get(self, group_id: int, caller_id: int):
        group = await self._get_group(group_id)
        role = await self.membership.get_role(caller_id, group_id)
        if group.is_private and role is None:
            raise ForbiddenError("Access denied", reason="not_a_member")
        return await self._to_response(group, show_invite_code=role in MODERATION_ROLES), ""

    @service_operation("Failed to get groups")
    async def list_for_user(self, user_id: int, page: int = 1, page_size: Optional[int] = None):
        page, page_size = validate_page(page, page_size)
        stmt = (
            select(Group, GroupMember.role)
            .join(GroupMember, GroupMember.group_id == Group.id)
            .where(
                GroupMember.user_id == user_id,
                GroupMember.is_deleted == False,
                GroupMember.is_banned == False,
                GroupMember.is_approved == True,
                Group.is_deleted == False,
            )
        )
        total_count = await self.db.scalar(select(func.count()).select_from(stmt.subquery()))
        result = await self.db.execute(
            stmt.order_by(Group.name, Group.id).offset(offset_for(page, page_size)).limit(page_size)
        )

        items = [
            await self._to_response(group, show_invite_code=role in MODERATION_ROLES)
            for group, role in result.all()
        ]
        return self._paged(items, page, page_size, total_count), ""

    @service_operation("Failed to search groups")
    async def search_public(self, search_term: Optional[str] = None, page: int = 1, page_size: Optional[int] = None):
        page, page_size = validate_page(page, page_size)
        stmt = select(Group).where(Group.is_deleted == False, Group.is_private == False)
        if search_term:
            stmt = stmt.where(
                Group.name.contains(search_term, autoescape=True)
                | Group.description.contains(search_term, autoescape=True)
            )

        total_count = await self.db.scalar(select(func.count()).select_from(stmt.subquery()))
        result = await self.db.execute(
            stmt.order_by(Group.name, Group.id).offset(offset_for(page, page_size)).limit(page_size)
        )
        items = [await self._to_response(group) for group in result.scalars().all()]
        return self._paged(items, page, page_size, total_count), ""

    @service_operation("Failed to join group")
    async def join(self, user_id: int, group_id: Optional[int] = None, invite_code: Optional[str] = None):
        if (group_id is None) == (not invite_code):
            raise ValidationError(
                "Provide either a group id or an invite code",
                reason="invalid_join_request",
            )

        if invite_code:
            group = await self.db.scalar(
                select(Group).where(Group.invite_code == invite_code.strip().upper(), Group.is_deleted == False)
            )
            if group is None:
                raise NotFoundError("Invalid invite code", reason="invalid_invite_code")
        else:
            group = await self._get_group(group_id)

        # A private group let in by id alone waits for a moderator
        is_approved = not group.is_private or bool(invite_code)

        membership = await self.db.get(GroupMember, (user_id, group.id))
        now = utcnow()
        if membership is not None:
            if membership.is_banned:
                raise ForbiddenError("You are banned from this group", reason="banned")
            if not membership.is_deleted:
                if membership.is_approved:
                    raise ConflictError("Already a member of this group", reason="already_member")
                raise ConflictError("Join request already pending approval", reason="already_member")

            membership.is_deleted = False
            membership.is_approved = is_approved
            membership.role = GroupRole.MEMBER
            membership.joined_at = now
            membership.left_at = None
        else:
            membership = GroupMember(
                user_id=user_id,
                group_id=group.id,
                role=GroupRole.MEMBER,
                is_approved=is_approved,
                joined_at=now,
            )
            self.db.add(membership)

        try:
            await self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent join of the same pair
            raise ConflictError("Already a member of this group", reason="already_member")

        if is_approved:
            logger.info(f"👥 User {user_id} joined group {group.id}")
            message = "Joined group successfully"
        else:
            logger.info(f"⏳ User {user_id} requested to join group {group.id}")
            message = "Join request sent, waiting for approval"
        return await self._to_response(group), message

    @service_operation("Failed to approve member")
    async def approve_member(self, group_id: int, member_id: int, caller_id: int):
        await self._get_group(group_id)
        await self.membership.require_role(
            caller_id, group_id, MODERATION_ROLES,
            message="Only admins and moderators can approve members",
        )

        target = await self.membership.get_membership(member_id, group_id, include_pending=True)
        if target is None:
            raise NotFoundError("Member not found", reason="member_not_found")
        if target.is_approved:
            raise ConflictError("Member is already approved", reason="already_approved")

        target.is_approved = True
        await self.db.commit()

        logger.info(f"✅ User {member_id} approved in group {group_id} by user {caller_id}")
        return True, "Member approved successfully"

    @service_operation("Failed to leave group")
    async def leave(self, group_id: int, user_id: int):
        group = await self._get_group(group_id)
        membership = await self.membership.get_membership(user_id, group_id, include_pending=True)
        if membership is None:
            raise ForbiddenError("You are not a member of this group", reason="not_a_member")
        if group.created_by == user_id:
            raise ForbiddenError("The group creator cannot leave the group", reason="creator_immune")

        membership.is_deleted = True
        membership.left_at = utcnow()
        await self.db.commit()

        logger.info(f"👋 User {user_id} left group {group_id}")
        await self._evict(user_id, group_id)
        return True, "Left group successfully"

    @service_operation("Failed to get members")
    async def list_members(
        self,
        group_id: int,
        caller_id: int,
        page: int = 1,
        page_size: Optional[int] = None,
        include_pending: bool = False,
    ):
        page, page_size = validate_page(page, page_size)
        await self._get_group(group_id)
        caller = await self.membership.require_member(caller_id, group_id)
        if include_pending and caller.role not in MODERATION_ROLES:
            raise ForbiddenError("Only admins and moderators can see pending members", reason="insufficient_role")

        stmt = select(GroupMember).where(
            GroupMember.group_id == group_id,
            GroupMember.is_deleted == False,
            GroupMember.is_banned == False,
        )
        if not include_pending:
            stmt = stmt.where(GroupMember.is_approved == True)

        total_count = await self.db.scalar(select(func.count()).select_from(stmt.subquery()))
        result = await self.db.execute(
            stmt.options(selectinload(GroupMember.user))
            .order_by(GroupMember.joined_at, GroupMember.user_id)
            .offset(offset_for(page, page_size))
            .limit(page_size)
        )

        items = [
            GroupMemberResponse(
                user_id=member.user_id,
                username=member.user.username,
                role=member.role,
                is_approved=member.is_approved,
                joined_at=member.joined_at,
            )
            for member in result.scalars().all()
        ]
        return self._paged(items, page, page_size, total_count), ""

    @service_operation("Failed to remove member")
    async def remove_member(self, group_id: int, member_id: int, caller_id: int, ban: bool = False):
        group = await self._get_group(group_id)
        actor = await self.membership.require_role(
            caller_id, group_id, MODERATION_ROLES,
            message="Only admins and moderators can remove members",
        )

        target = await self.membership.get_membership(member_id, group_id, include_pending=True)
        if target is None:
            raise NotFoundError("Member not found", reason="member_not_found")
        if target.user_id == group.created_by:
            raise ForbiddenError("The group creator cannot be removed", reason="creator_immune")
        if not can_remove(actor.role, target, group):
            raise ForbiddenError("You cannot remove this member", reason="insufficient_role")

        target.is_deleted = True
        target.left_at = utcnow()
        if ban:
            target.is_banned = True
        await self.db.commit()

        action = "banned" if ban else "removed"
        logger.info(f"🚫 User {member_id} {action} from group {group_id} by user {caller_id}")
        await self._evict(member_id, group_id)
        return True, f"Member {action} successfully"

    @service_operation("Failed to update member role")
    async def update_role(self, group_id: int, member_id: int, role: str, caller_id: int):
        try:
            new_role = GroupRole(role)
        except ValueError:
            raise ValidationError(f"Invalid role: {role}", reason="invalid_role")

        group = await self._get_group(group_id)
        actor = await self.membership.require_role(
            caller_id, group_id, (GroupRole.ADMIN,),
            message="Only admins can change member roles",
        )

        target = await self.membership.get_membership(member_id, group_id)
        if target is None:
            raise NotFoundError("Member not found", reason="member_not_found")
        if not can_change_role(actor.role, target, group):
            raise ForbiddenError("The group creator's role cannot be changed", reason="creator_immune")

        target.role = new_role
        await self.db.commit()

        logger.info(f"🎖️ User {member_id} is now {new_role.value} in group {group_id}")
        return True, "Member role updated successfully"

    @service_operation("Failed to generate invite code")
    async def generate_invite_code(self, group_id: int, caller_id: int):
        group = await self._get_group(group_id)
        await self.membership.require_role(
            caller_id, group_id, MODERATION_ROLES,
            message="Only admins and moderators can generate invite codes",
        )
        if not group.is_private:
            raise ValidationError("Invite codes are only available for private groups", reason="group_not_private")

        group.invite_code = await self._unique_invite_code()
        group.updated_at = utcnow()
        await self.db.commit()

        logger.info(f"🔑 New invite code for group {group_id}")
        return InviteCodeResponse(invite_code=group.invite_code), "Invite code generated successfully"

    # ------------------------------------------------------------------

    def _validate_name(self, name: Optional[str]) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Group name cannot be empty", reason="empty_name")
        if len(name) > 100:
            raise ValidationError("Group name too long (max 100 characters)", reason="name_too_long")
        return name

    async def _get_group(self, group_id: int) -> Group:
        group = await self.db.scalar(select(Group).where(Group.id == group_id, Group.is_deleted == False))
        if group is None:
            raise NotFoundError("Group not found", reason="group_not_found")
        return group

    async def _unique_invite_code(self) -> str:
        while True:
            code = generate_invite_code()
            taken = await self.db.scalar(select(Group.id).where(Group.invite_code == code))
            if taken is None:
                return code

    async def _member_count(self, group_id: int) -> int:
        return await self.db.scalar(
            select(func.count()).select_from(GroupMember).where(
                GroupMember.group_id == group_id,
                GroupMember.is_deleted == False,
                GroupMember.is_banned == False,
                GroupMember.is_approved == True,
            )
        )

    async def _to_response(self, group: Group, show_invite_code: bool = False) -> GroupResponse:
        return GroupResponse(
            id=group.id,
            name=group.name,
            description=group.description,
            is_private=group.is_private,
            created_by=group.created_by,
            created_at=group.created_at,
            updated_at=group.updated_at,
            member_count=await self._member_count(group.id),
            invite_code=group.invite_code if show_invite_code else None,
        )

    def _paged(self, items, page: int, page_size: int, total_count: int) -> PagedResult:
        pages = total_pages(total_count, page_size)
        return PagedResult(
            items=items,
            page=page,
            page_size=page_size,
            total_count=total_count,
            total_pages=pages,
            has_next_page=page < pages,
            has_previous_page=page > 1,
        )

    async def _evict(self, user_id: int, group_id: int) -> None:
        if self.hub is not None:
            await self.hub.evict_user(user_id, group_id)
