from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from groupchat.api.responses import to_response
from groupchat.core.dependencies import get_current_user, get_group_service, get_message_service
from groupchat.models.user import User
from groupchat.schemas.group import GroupCreate, GroupUpdate, JoinGroupRequest, UpdateMemberRoleRequest
from groupchat.services.group_service import GroupService
from groupchat.services.message_service import MessageService

router = APIRouter()


@router.post("")
async def create_group(
    data: GroupCreate,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service)
):
    result = await service.create(data.name, data.description, data.is_private, current_user.id)
    return to_response(result, success_status=status.HTTP_201_CREATED)


@router.get("")
async def list_my_groups(
    page: int = 1,
    page_size: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service)
):
    """Groups the current user is an approved member of"""
    return to_response(await service.list_for_user(current_user.id, page, page_size))


@router.get("/search")
async def search_groups(
    q: Optional[str] = Query(None, max_length=100),
    page: int = 1,
    page_size: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service)
):
    return to_response(await service.search_public(q, page, page_size))


@router.post("/join")
async def join_group(
    data: JoinGroupRequest,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service)
):
    """Join by group id (public, or a join request for private) or by invite code"""
    return to_response(await service.join(current_user.id, data.group_id, data.invite_code))


@router.get("/{group_id}")
async def get_group(
    group_id: int,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service)
):
    return to_response(await service.get(group_id, current_user.id))


@router.put("/{group_id}")
async def update_group(
    group_id: int,
    data: GroupUpdate,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service)
):
    result = await service.update(
        group_id,
        current_user.id,
        name=data.name,
        description=data.description,
        is_private=data.is_private,
    )
    return to_response(result)


@router.delete("/{group_id}")
async def delete_group(
    group_id: int,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service)
):
    return to_response(await service.delete(group_id, current_user.id))


@router.post("/{group_id}/leave")
async def leave_group(
    group_id: int,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service)
):
    return to_response(await service.leave(group_id, current_user.id))


@router.get("/{group_id}/members")
async def list_members(
    group_id: int,
    page: int = 1,
    page_size: Optional[int] = None,
    include_pending: bool = False,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service)
):
    result = await service.list_members(group_id, current_user.id, page, page_size, include_pending=include_pending)
    return to_response(result)


@router.delete("/{group_id}/members/{member_id}")
async def remove_member(
    group_id: int,
    member_id: int,
    ban: bool = False,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service)
):
    return to_response(await service.remove_member(group_id, member_id, current_user.id, ban=ban))


@router.put("/{group_id}/members/{member_id}/role")
async def update_member_role(
    group_id: int,
    member_id: int,
    data: UpdateMemberRoleRequest,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service)
):
    return to_response(await service.update_role(group_id, member_id, data.role, current_user.id))


@router.post("/{group_id}/members/{member_id}/approve")
async def approve_member(
    group_id: int,
    member_id: int,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service)
):
    return to_response(await service.approve_member(group_id, member_id, current_user.id))


@router.post("/{group_id}/invite-code")
async def generate_invite_code(
    group_id: int,
    current_user: User = Depends(get_current_user),
    service: GroupService = Depends(get_group_service)
):
    return to_response(await service.generate_invite_code(group_id, current_user.id))


# Group message history lives under the group's path

@router.get("/{group_id}/messages")
async def list_group_messages(
    group_id: int,
    page: int = 1,
    page_size: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    service: MessageService = Depends(get_message_service)
):
    """Newest first"""
    return to_response(await service.list_by_group(group_id, current_user.id, page, page_size))


@router.get("/{group_id}/messages/search")
async def search_group_messages(
    group_id: int,
    q: Optional[str] = Query(None, max_length=200),
    from_user_id: Optional[int] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    page: int = 1,
    page_size: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    service: MessageService = Depends(get_message_service)
):
    result = await service.search(
        group_id,
        current_user.id,
        search_term=q,
        from_user_id=from_user_id,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )
    return to_response(result)
