from pydantic import BaseModel, field_serializer
from datetime import datetime, timezone
from typing import Optional, List

class MessageCreate(BaseModel):
    group_id: int
    content: str
    reply_to_message_id: Optional[int] = None
    attachment_urls: Optional[List[str]] = None

class MessageUpdate(BaseModel):
    content: str

class MessageReplyPreview(BaseModel):
    id: int
    content: str
    user_id: int
    username: str
    is_deleted: bool

class MessageResponse(BaseModel):
    id: int
    content: str
    user_id: int
    username: str
    group_id: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    is_edited: bool
    is_deleted: bool
    reply_to_message_id: Optional[int] = None
    reply_to_message: Optional[MessageReplyPreview] = None
    attachment_urls: List[str] = []

    @field_serializer("created_at", "updated_at")
    def serialize_timestamp(self, dt: Optional[datetime]) -> Optional[str]:
        # SQLite hands back naive datetimes; everything is stored in UTC
        if dt is None:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.isoformat()

class MessagePage(BaseModel):
    messages: List[MessageResponse] = []
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool

class MessageDeletedEvent(BaseModel):
    message_id: int
    group_id: int
