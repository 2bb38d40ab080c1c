from .common import ApiResponse, PagedResult
from .user import RegisterRequest, LoginRequest, RefreshTokenRequest, UserResponse, AuthResponse
from .group import (
    GroupCreate, GroupUpdate, GroupResponse, GroupMemberResponse,
    JoinGroupRequest, UpdateMemberRoleRequest, InviteCodeResponse,
)
from .message import MessageCreate, MessageUpdate, MessageResponse, MessagePage, MessageDeletedEvent

__all__ = [
    "ApiResponse", "PagedResult",
    "RegisterRequest", "LoginRequest", "RefreshTokenRequest", "UserResponse", "AuthResponse",
    "GroupCreate", "GroupUpdate", "GroupResponse", "GroupMemberResponse",
    "JoinGroupRequest", "UpdateMemberRoleRequest", "InviteCodeResponse",
    "MessageCreate", "MessageUpdate", "MessageResponse", "MessagePage", "MessageDeletedEvent",
]
