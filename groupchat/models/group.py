from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean, Enum
from sqlalchemy.orm import relationship
from groupchat.db.database import Base
from groupchat.utils.timezone import utcnow
import enum

class GroupRole(str, enum.Enum):
    ADMIN = "Admin"
    MODERATOR = "Moderator"
    MEMBER = "Member"

class Group(Base):
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(String(500), nullable=True)
    is_private = Column(Boolean, default=False, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    invite_code = Column(String(50), unique=True, nullable=True)  # only while private
    is_deleted = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    creator = relationship("User")
    members = relationship("GroupMember", back_populates="group", cascade="all, delete-orphan")
    messages = relationship("Message", back_populates="group", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Group(id={self.id}, name={self.name}, private={self.is_private})>"

class GroupMember(Base):
    __tablename__ = "group_members"

    # One row per (user, group); leaving soft-deletes it, re-joining reactivates it
    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    group_id = Column(Integer, ForeignKey("groups.id"), primary_key=True)
    role = Column(
        Enum(GroupRole, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        default=GroupRole.MEMBER,
        nullable=False,
    )
    is_approved = Column(Boolean, default=True, nullable=False, index=True)
    is_banned = Column(Boolean, default=False, nullable=False, index=True)
    is_deleted = Column(Boolean, default=False, nullable=False)
    joined_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    left_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    group = relationship("Group", back_populates="members")
    user = relationship("User", back_populates="memberships")

    def __repr__(self):
        return f"<GroupMember(user_id={self.user_id}, group_id={self.group_id}, role={self.role})>"
