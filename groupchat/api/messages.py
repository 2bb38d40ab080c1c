from typing import Optional

from fastapi import APIRouter, Depends, status

from groupchat.api.responses import to_response
from groupchat.core.dependencies import get_current_user, get_message_service
from groupchat.models.user import User
from groupchat.schemas.message import MessageCreate, MessageUpdate
from groupchat.services.message_service import MessageService

router = APIRouter()


@router.post("")
async def send_message(
    data: MessageCreate,
    current_user: User = Depends(get_current_user),
    service: MessageService = Depends(get_message_service)
):
    """Store a message and push it to everyone connected to the group"""
    result = await service.send(
        data.group_id,
        current_user.id,
        data.content,
        reply_to_id=data.reply_to_message_id,
        attachments=data.attachment_urls,
    )
    return to_response(result, success_status=status.HTTP_201_CREATED)


@router.get("/{message_id}")
async def get_message(
    message_id: int,
    current_user: User = Depends(get_current_user),
    service: MessageService = Depends(get_message_service)
):
    return to_response(await service.get(message_id, current_user.id))


@router.put("/{message_id}")
async def edit_message(
    message_id: int,
    data: MessageUpdate,
    current_user: User = Depends(get_current_user),
    service: MessageService = Depends(get_message_service)
):
    return to_response(await service.edit(message_id, data.content, current_user.id))


@router.delete("/{message_id}")
async def delete_message(
    message_id: int,
    current_user: User = Depends(get_current_user),
    service: MessageService = Depends(get_message_service)
):
    return to_response(await service.delete(message_id, current_user.id))


@router.get("/{message_id}/replies")
async def list_replies(
    message_id: int,
    page: int = 1,
    page_size: Optional[int] = None,
    current_user: User = Depends(get_current_user),
    service: MessageService = Depends(get_message_service)
):
    """Replies oldest first; works even when the parent was deleted"""
    return to_response(await service.list_replies(message_id, current_user.id, page, page_size))
