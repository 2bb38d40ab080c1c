"""
Message store: send, edit, soft-delete and query group messages.

Per message: Active -> Edited -> Deleted, or Active -> Deleted. Deleted is
terminal; deleted rows are kept for audit and for replies that point at them,
but never show up in listings, search or reply threads.
"""
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from groupchat.core.config import settings
from groupchat.core.errors import ForbiddenError, NotFoundError, ValidationError, service_operation
from groupchat.models import GroupRole, Message
from groupchat.schemas.common import PagedResult
from groupchat.schemas.message import MessageDeletedEvent, MessagePage, MessageReplyPreview, MessageResponse
from groupchat.services.membership import MODERATION_ROLES, MembershipAuthority
from groupchat.services.pagination import offset_for, total_pages, validate_page
from groupchat.utils.timezone import utcnow
from groupchat.websocket.hub import ChatHub

logger = logging.getLogger(__name__)

DELETED_PLACEHOLDER = "This message was deleted"


def to_message_response(message: Message) -> MessageResponse:
    reply_preview = None
    if message.reply_to is not None:
        parent = message.reply_to
        reply_preview = MessageReplyPreview(
            id=parent.id,
            content=DELETED_PLACEHOLDER if parent.is_deleted else parent.content,
            user_id=parent.author_id,
            username=parent.author.username,
            is_deleted=parent.is_deleted,
        )

    return MessageResponse(
        id=message.id,
        content=message.content,
        user_id=message.author_id,
        username=message.author.username,
        group_id=message.group_id,
        created_at=message.created_at,
        updated_at=message.updated_at,
        is_edited=message.is_edited,
        is_deleted=message.is_deleted,
        reply_to_message_id=message.reply_to_id,
        reply_to_message=reply_preview,
        attachment_urls=list(message.attachment_urls or []),
    )


class MessageService:
    def __init__(self, db: AsyncSession, hub: Optional[ChatHub] = None):
        self.db = db
        self.hub = hub
        self.membership = MembershipAuthority(db)

    @service_operation("Failed to send message")
    async def send(
        self,
        group_id: int,
        author_id: int,
        content: str,
        reply_to_id: Optional[int] = None,
        attachments: Optional[List[str]] = None,
    ):
        content = self._validate_content(content)
        attachments = list(attachments or [])
        if len(attachments) > settings.MAX_ATTACHMENTS:
            raise ValidationError(
                f"Too many attachments (max {settings.MAX_ATTACHMENTS})",
                reason="too_many_attachments",
            )

        await self.membership.require_member(author_id, group_id)

        # The reply target has to be a live message in the same group
        if reply_to_id is not None:
            parent = await self.db.scalar(
                select(Message).where(
                    Message.id == reply_to_id,
                    Message.group_id == group_id,
                    Message.is_deleted == False,
                )
            )
            if parent is None:
                raise NotFoundError("Reply message not found", reason="reply_target_not_found")

        now = utcnow()
        message = Message(
            group_id=group_id,
            author_id=author_id,
            content=content,
            reply_to_id=reply_to_id,
            attachment_urls=attachments,
            created_at=now,
            updated_at=now,
        )
        self.db.add(message)
        await self.db.commit()

        dto = to_message_response(await self._load(message.id))
        logger.info(f"Message {message.id} sent by user {author_id} to group {group_id}")

        await self._broadcast(group_id, "ReceiveMessage", dto)
        return dto, "Message sent successfully"

    @service_operation("Failed to update message")
    async def edit(self, message_id: int, new_content: str, caller_id: int):
        message = await self._get_live(message_id)

        # Only the author or a group admin may edit
        if message.author_id != caller_id:
            role = await self.membership.get_role(caller_id, message.group_id)
            if role != GroupRole.ADMIN:
                raise ForbiddenError("You can only edit your own messages", reason="not_author")

        message.content = self._validate_content(new_content)
        message.is_edited = True
        message.updated_at = utcnow()
        await self.db.commit()

        dto = to_message_response(await self._load(message_id))
        logger.info(f"Message {message_id} edited by user {caller_id}")

        await self._broadcast(message.group_id, "MessageEdited", dto)
        return dto, "Message updated successfully"

    @service_operation("Failed to delete message")
    async def delete(self, message_id: int, caller_id: int):
        message = await self._get_live(message_id)

        # Author, group admin or moderator
        if message.author_id != caller_id:
            role = await self.membership.get_role(caller_id, message.group_id)
            if role not in MODERATION_ROLES:
                raise ForbiddenError("You can only delete your own messages", reason="not_author")

        group_id = message.group_id
        message.is_deleted = True
        message.updated_at = utcnow()
        await self.db.commit()

        logger.info(f"Message {message_id} deleted by user {caller_id}")

        await self._broadcast(group_id, "MessageDeleted", MessageDeletedEvent(message_id=message_id, group_id=group_id))
        return True, "Message deleted successfully"

    @service_operation("Failed to get message")
    async def get(self, message_id: int, caller_id: int):
        message = await self._get_live(message_id)
        if not await self.membership.is_member(caller_id, message.group_id):
            raise ForbiddenError("Access denied", reason="not_a_member")
        return to_message_response(await self._load(message_id)), ""

    @service_operation("Failed to get messages")
    async def list_by_group(self, group_id: int, caller_id: int, page: int = 1, page_size: Optional[int] = None):
        page, page_size = validate_page(page, page_size)
        await self.membership.require_member(caller_id, group_id)

        stmt = select(Message).where(Message.group_id == group_id, Message.is_deleted == False)
        return await self._page(stmt, page, page_size, newest_first=True), ""

    @service_operation("Failed to search messages")
    async def search(
        self,
        group_id: int,
        caller_id: int,
        search_term: Optional[str] = None,
        from_user_id: Optional[int] = None,
        from_date: Optional[datetime] = None,
        to_date: Optional[datetime] = None,
        page: int = 1,
        page_size: Optional[int] = None,
    ):
        page, page_size = validate_page(page, page_size)
        await self.membership.require_member(caller_id, group_id)

        stmt = select(Message).where(Message.group_id == group_id, Message.is_deleted == False)
        if search_term:
            stmt = stmt.where(Message.content.contains(search_term, autoescape=True))
        if from_user_id is not None:
            stmt = stmt.where(Message.author_id == from_user_id)
        if from_date is not None:
            stmt = stmt.where(Message.created_at >= from_date)
        if to_date is not None:
            stmt = stmt.where(Message.created_at <= to_date)

        return await self._page(stmt, page, page_size, newest_first=True), ""

    @service_operation("Failed to get message replies")
    async def list_replies(self, message_id: int, caller_id: int, page: int = 1, page_size: Optional[int] = None):
        page, page_size = validate_page(page, page_size)

        # The parent may itself be deleted; its replies stay readable
        parent = await self.db.get(Message, message_id)
        if parent is None:
            raise NotFoundError("Message not found", reason="message_not_found")
        if not await self.membership.is_member(caller_id, parent.group_id):
            raise ForbiddenError("Access denied", reason="not_a_member")

        stmt = select(Message).where(Message.reply_to_id == message_id, Message.is_deleted == False)
        message_page = await self._page(stmt, page, page_size, newest_first=False)
        return PagedResult[MessageResponse](
            items=message_page.messages,
            page=message_page.page,
            page_size=message_page.page_size,
            total_count=message_page.total_count,
            total_pages=message_page.total_pages,
            has_next_page=message_page.has_next_page,
            has_previous_page=message_page.has_previous_page,
        ), ""

    # ------------------------------------------------------------------

    def _validate_content(self, content: Optional[str]) -> str:
        content = (content or "").strip()
        if not content:
            raise ValidationError("Message content cannot be empty", reason="empty_content")
        if len(content) > settings.MESSAGE_MAX_LENGTH:
            raise ValidationError(
                f"Message too long (max {settings.MESSAGE_MAX_LENGTH} characters)",
                reason="content_too_long",
            )
        return content

    async def _get_live(self, message_id: int) -> Message:
        message = await self.db.scalar(
            select(Message).where(Message.id == message_id, Message.is_deleted == False)
        )
        if message is None:
            raise NotFoundError("Message not found", reason="message_not_found")
        return message

    async def _load(self, message_id: int) -> Message:
        result = await self.db.execute(
            select(Message)
            .where(Message.id == message_id)
            .options(
                selectinload(Message.author),
                selectinload(Message.reply_to).selectinload(Message.author),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _page(self, stmt, page: int, page_size: int, newest_first: bool) -> MessagePage:
        total_count = await self.db.scalar(select(func.count()).select_from(stmt.subquery()))

        if newest_first:
            stmt = stmt.order_by(Message.created_at.desc(), Message.id.desc())
        else:
            stmt = stmt.order_by(Message.created_at.asc(), Message.id.asc())

        result = await self.db.execute(
            stmt.options(
                selectinload(Message.author),
                selectinload(Message.reply_to).selectinload(Message.author),
            )
            .offset(offset_for(page, page_size))
            .limit(page_size)
            .execution_options(populate_existing=True)
        )
        messages = result.scalars().all()

        pages = total_pages(total_count, page_size)
        return MessagePage(
            messages=[to_message_response(m) for m in messages],
            page=page,
            page_size=page_size,
            total_count=total_count,
            total_pages=pages,
            has_next_page=page < pages,
            has_previous_page=page > 1,
        )

    async def _broadcast(self, group_id: int, event: str, payload) -> None:
        if self.hub is not None:
            await self.hub.broadcast(group_id, event, payload)
