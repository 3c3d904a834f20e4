from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime
from enum import Enum
import uuid

from keepsake.core.clock import utc_now


class MemoryVisibility(str, Enum):
    EVERYONE = "everyone"
    PRIVATE = "private"
    SCHEDULED = "scheduled"
    GROUP = "group"


class AttachmentKind(str, Enum):
    IMAGE = "image"
    AUDIO = "audio"


class CapsuleTier(str, Enum):
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"


class CapsuleStatus(str, Enum):
    LOCKED = "locked"
    UNLOCKABLE = "unlockable"


class Attachment(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: AttachmentKind
    filename: str  # store-relative name or URL
    created_at: datetime = Field(default_factory=utc_now)


class MemoryPayload(BaseModel):
    title: str
    body: Optional[str] = None
    category: Optional[str] = None
    year: Optional[int] = None


class CapsuleCreate(MemoryPayload):
    release_at: datetime


class MemoryResponse(BaseModel):
    id: str
    user_id: str
    title: str
    body: Optional[str] = None
    category: Optional[str] = None
    year: Optional[int] = None
    visibility: MemoryVisibility
    release_at: Optional[datetime] = None
    created_at: datetime
    attachments: List[Attachment] = []

    class Config:
        from_attributes = True


class CapsuleView(BaseModel):
    memory: MemoryResponse
    status: CapsuleStatus
    is_ready: bool
    progress: float
    tier: CapsuleTier
    seconds_remaining: float
    time_remaining: str


class TierPreview(BaseModel):
    tier: CapsuleTier
    days: float


class NotificationRequest(BaseModel):
    identifier: str
    title: str
    body: str
    fire_at: datetime
    category: str = "MEMORY_CAPSULE"
    payload: Dict[str, str] = {}


class NotificationAction(str, Enum):
    OPEN = "open"
    REMIND_LATER = "remind_later"


class NotificationAck(BaseModel):
    action: NotificationAction
