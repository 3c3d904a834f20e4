from datetime import datetime
from fastapi import APIRouter, Depends, Request
from keepsake.config import settings
from keepsake.core.clock import as_utc, utc_now
from keepsake.core.dependencies import get_current_user_id
from keepsake.core.errors import NotFoundError
from keepsake.database.supabase_client import get_supabase
from keepsake.modules.capsules.notifications import NotificationCenter
from keepsake.modules.capsules.schemas import (
    CapsuleCreate, CapsuleView, MemoryPayload, MemoryResponse, NotificationAck,
    NotificationRequest, TierPreview
)
from keepsake.modules.capsules.service import CapsuleScheduler, tier_for_duration
from keepsake.modules.capsules.store import SupabaseMemoryStore
from supabase import AsyncClient
from typing import List, Dict, Optional

router = APIRouter(prefix="/capsules", tags=["capsules"])


def get_notification_center(request: Request) -> NotificationCenter:
    return request.app.state.notification_center


def get_capsule_scheduler(
    supabase: AsyncClient = Depends(get_supabase),
    notifications: NotificationCenter = Depends(get_notification_center)
) -> CapsuleScheduler:
    return CapsuleScheduler(
        SupabaseMemoryStore(supabase),
        notifications,
        timeout=settings.remote_timeout_seconds,
        attachment_wait=settings.attachment_wait_seconds,
    )


@router.post("", response_model=MemoryResponse, status_code=201)
async def schedule_capsule(
    capsule_data: CapsuleCreate,
    current_user: Dict = Depends(get_current_user_id),
    scheduler: CapsuleScheduler = Depends(get_capsule_scheduler)
):
    """Schedule a memory to unlock at release_at (must be in the future)"""
    payload = MemoryPayload(**capsule_data.model_dump(exclude={"release_at"}))
    return await scheduler.schedule_memory(current_user["id"], payload, capsule_data.release_at)


@router.get("", response_model=List[CapsuleView])
async def list_capsules(
    current_user: Dict = Depends(get_current_user_id),
    scheduler: CapsuleScheduler = Depends(get_capsule_scheduler)
):
    """List the caller's capsules with their derived lock state, progress and tier"""
    memories = await scheduler.list_capsules(current_user["id"])
    now = scheduler.clock()
    return [scheduler.preview(memory, now) for memory in memories]


@router.get("/tier-preview", response_model=TierPreview)
async def preview_tier(release_at: datetime):
    """Tier a capsule would get if created now with this release time"""
    duration = as_utc(release_at) - utc_now()
    return TierPreview(tier=tier_for_duration(duration), days=duration.total_seconds() / 86400)


@router.get("/notifications", response_model=List[NotificationRequest])
async def list_notifications(
    current_user: Dict = Depends(get_current_user_id),
    scheduler: CapsuleScheduler = Depends(get_capsule_scheduler)
):
    """Unlock notifications that have come due for the caller's capsules"""
    return scheduler.notifications_for(current_user["id"])


@router.post("/{memory_id}/notification", response_model=Optional[NotificationRequest])
async def acknowledge_notification(
    memory_id: str,
    ack: NotificationAck,
    current_user: Dict = Depends(get_current_user_id),
    scheduler: CapsuleScheduler = Depends(get_capsule_scheduler)
):
    """open clears the notification; remind_later replaces it with one reminder an hour from now"""
    return scheduler.acknowledge_notification(current_user["id"], memory_id, ack.action)


@router.get("/{memory_id}", response_model=CapsuleView)
async def get_capsule(
    memory_id: str,
    current_user: Dict = Depends(get_current_user_id),
    scheduler: CapsuleScheduler = Depends(get_capsule_scheduler)
):
    memory = await scheduler.get_capsule(memory_id)
    if memory.user_id != current_user["id"]:
        raise NotFoundError(f"Scheduled memory {memory_id} not found")
    return scheduler.preview(memory)
