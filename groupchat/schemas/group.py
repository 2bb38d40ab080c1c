from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional
from groupchat.models.group import GroupRole

class GroupCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_private: bool = False

class GroupUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    is_private: Optional[bool] = None

class GroupResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    is_private: bool
    created_by: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    member_count: int = 0
    # Only filled in for Admin/Moderator viewers
    invite_code: Optional[str] = None

class GroupMemberResponse(BaseModel):
    user_id: int
    username: str
    role: GroupRole
    is_approved: bool
    joined_at: datetime

class JoinGroupRequest(BaseModel):
    group_id: Optional[int] = None
    invite_code: Optional[str] = None

class UpdateMemberRoleRequest(BaseModel):
    # Validated by the service so unknown roles come back as a domain error
    role: str

class InviteCodeResponse(BaseModel):
    invite_code: str
