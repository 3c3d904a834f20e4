from pydantic import BaseModel, Field
from typing import List

from keepsake.modules.capsules.schemas import CapsuleCreate


class GroupShareRequest(BaseModel):
    group_ids: List[str] = Field(..., min_length=1)


class GroupCapsuleCreate(CapsuleCreate):
    group_ids: List[str] = Field(..., min_length=1)


class MemoryGroupsResponse(BaseModel):
    memory_id: str
    group_ids: List[str]
