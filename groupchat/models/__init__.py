from .user import User, UserStatus
from .group import Group, GroupMember, GroupRole
from .message import Message
from .refresh_token import RefreshToken

__all__ = [
    "User",
    "UserStatus",
    "Group",
    "GroupMember",
    "GroupRole",
    "Message",
    "RefreshToken",
]
