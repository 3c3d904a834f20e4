from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from enum import Enum


class JoinRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class GroupCreate(BaseModel):
    name: str


class JoinGroupRequest(BaseModel):
    code: str


class MemberTarget(BaseModel):
    user_id: str


class GroupResponse(BaseModel):
    id: str
    name: str
    code: str
    admin_id: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GroupMemberResponse(BaseModel):
    group_id: str
    user_id: str
    name: Optional[str] = None
    email: Optional[str] = None
    is_admin: bool = False
    joined_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class JoinRequestResponse(BaseModel):
    id: str
    group_id: str
    user_id: str
    status: JoinRequestStatus = JoinRequestStatus.PENDING
    requested_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None

    class Config:
        from_attributes = True
