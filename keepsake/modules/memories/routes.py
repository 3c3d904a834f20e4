from datetime import datetime
from functools import partial
from fastapi import APIRouter, Depends, File, Form, UploadFile
from keepsake.config import settings
from keepsake.core.dependencies import get_current_user_id
from keepsake.core.errors import ValidationError, ValidationReason
from keepsake.modules.capsules.attachments import LocalAttachmentStore
from keepsake.modules.capsules.routes import get_capsule_scheduler
from keepsake.modules.capsules.schemas import CapsuleView, MemoryPayload, MemoryResponse, MemoryVisibility
from keepsake.modules.capsules.service import CapsuleScheduler
from keepsake.modules.groups.routes import get_group_manager
from keepsake.modules.groups.service import GroupLifecycleManager
from keepsake.modules.memories.schemas import GroupCapsuleCreate, GroupShareRequest, MemoryGroupsResponse
from keepsake.modules.memories.service import MemoryService
from typing import List, Dict, Optional

router = APIRouter(prefix="/memories", tags=["memories"])


def get_attachment_store() -> LocalAttachmentStore:
    return LocalAttachmentStore(settings.attachment_dir)


def get_memory_service(
    scheduler: CapsuleScheduler = Depends(get_capsule_scheduler),
    manager: GroupLifecycleManager = Depends(get_group_manager)
) -> MemoryService:
    return MemoryService(scheduler, manager.membership, timeout=settings.remote_timeout_seconds)


def _require_kind(upload: UploadFile, kind: str) -> None:
    if upload.content_type and not upload.content_type.startswith(f"{kind}/"):
        raise ValidationError(
            f"{upload.filename or 'Upload'} is not an {kind} file", ValidationReason.INVALID_ATTACHMENT
        )


@router.post("", response_model=MemoryResponse, status_code=201)
async def create_memory(
    title: str = Form(...),
    body: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    year: Optional[int] = Form(None),
    visibility: MemoryVisibility = Form(MemoryVisibility.PRIVATE),
    release_at: Optional[datetime] = Form(None),
    group_ids: Optional[List[str]] = Form(None),
    images: Optional[List[UploadFile]] = File(None),
    audio: Optional[List[UploadFile]] = File(None),
    current_user: Dict = Depends(get_current_user_id),
    attachments: LocalAttachmentStore = Depends(get_attachment_store),
    service: MemoryService = Depends(get_memory_service)
):
    """
    Create a memory with image and audio uploads

    Uploads are saved concurrently; any that miss the attachment deadline are
    left off the memory rather than failing the request.
    """
    saves = []
    for image in images or []:
        _require_kind(image, "image")
        saves.append(partial(attachments.save_image, await image.read()))
    for clip in audio or []:
        _require_kind(clip, "audio")
        saves.append(partial(attachments.save_audio, await clip.read(), clip.filename))

    payload = MemoryPayload(title=title, body=body, category=category, year=year)
    return await service.create(current_user["id"], payload, visibility, release_at, group_ids or [], saves)


@router.post("/scheduled", response_model=MemoryResponse, status_code=201)
async def schedule_for_groups(
    capsule_data: GroupCapsuleCreate,
    current_user: Dict = Depends(get_current_user_id),
    service: MemoryService = Depends(get_memory_service)
):
    """Schedule a capsule and share it with groups the caller belongs to"""
    payload = MemoryPayload(**capsule_data.model_dump(exclude={"release_at", "group_ids"}))
    return await service.schedule_for_groups(
        current_user["id"], payload, capsule_data.release_at, capsule_data.group_ids
    )


@router.get("/by-group/{group_id}", response_model=List[MemoryResponse])
async def list_group_memories(
    group_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: MemoryService = Depends(get_memory_service)
):
    return await service.group_memories(group_id, current_user["id"])


@router.get("/by-group/{group_id}/capsules", response_model=List[CapsuleView])
async def list_group_capsules(
    group_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: MemoryService = Depends(get_memory_service)
):
    """Capsules shared with the group, soonest release first"""
    return await service.group_capsules(group_id, current_user["id"])


@router.get("/{memory_id}/groups", response_model=MemoryGroupsResponse)
async def get_memory_groups(
    memory_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: MemoryService = Depends(get_memory_service)
):
    group_ids = await service.memory_groups(memory_id, current_user["id"])
    return MemoryGroupsResponse(memory_id=memory_id, group_ids=group_ids)


@router.post("/{memory_id}/groups", response_model=MemoryGroupsResponse)
async def share_memory(
    memory_id: str,
    share_data: GroupShareRequest,
    current_user: Dict = Depends(get_current_user_id),
    service: MemoryService = Depends(get_memory_service)
):
    """Share one of the caller's memories with more groups (already shared groups are kept)"""
    group_ids = await service.share(memory_id, share_data.group_ids, current_user["id"])
    return MemoryGroupsResponse(memory_id=memory_id, group_ids=group_ids)


@router.delete("/{memory_id}/groups/{group_id}", response_model=MemoryGroupsResponse)
async def unshare_memory(
    memory_id: str,
    group_id: str,
    current_user: Dict = Depends(get_current_user_id),
    service: MemoryService = Depends(get_memory_service)
):
    group_ids = await service.unshare(memory_id, group_id, current_user["id"])
    return MemoryGroupsResponse(memory_id=memory_id, group_ids=group_ids)
