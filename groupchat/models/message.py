from __future__ import annotations
from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, JSON
from sqlalchemy.orm import relationship, Mapped
from groupchat.db.database import Base
from groupchat.utils.timezone import utcnow

if TYPE_CHECKING:
    from .user import User
    from .group import Group

class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = Column(Integer, primary_key=True, index=True)
    group_id: Mapped[int] = Column(Integer, ForeignKey("groups.id"), nullable=False, index=True)
    author_id: Mapped[int] = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content: Mapped[str] = Column(String(2000), nullable=False)
    reply_to_id: Mapped[Optional[int]] = Column(Integer, ForeignKey("messages.id"), nullable=True)
    attachment_urls: Mapped[List[str]] = Column(JSON, default=list, nullable=False)
    is_edited: Mapped[bool] = Column(Boolean, default=False, nullable=False)
    is_deleted: Mapped[bool] = Column(Boolean, default=False, nullable=False, index=True)
    created_at: Mapped[datetime] = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), default=utcnow)

    author: Mapped["User"] = relationship("User", back_populates="messages")
    group: Mapped["Group"] = relationship("Group", back_populates="messages")

    # Self-reference for replies; deleted parents stay referenceable
    reply_to: Mapped[Optional["Message"]] = relationship("Message", remote_side=[id], backref="replies")

    def __repr__(self):
        return f"<Message(id={self.id}, author_id={self.author_id}, group_id={self.group_id})>"
