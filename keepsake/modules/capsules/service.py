import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from keepsake.core.clock import Clock, as_utc, utc_now
from keepsake.core.errors import NotFoundError, ValidationError, ValidationReason
from keepsake.core.remote import effective_timeout, remote_call
from keepsake.modules.capsules.attachments import AttachmentSave, collect_attachments
from keepsake.modules.capsules.notifications import (
    NotificationCenter, capsule_ready_identifier, capsule_reminder_identifier
)
from keepsake.modules.capsules.schemas import (
    Attachment, CapsuleStatus, CapsuleTier, CapsuleView, MemoryPayload,
    MemoryResponse, MemoryVisibility, NotificationAction, NotificationRequest
)
from keepsake.modules.capsules.store import MemoryStore

logger = logging.getLogger(__name__)

SILVER_THRESHOLD = timedelta(days=30)
GOLD_THRESHOLD = timedelta(days=365)
READY_MESSAGE = "Ready to open!"
READY_TITLE = "Memory Capsule Ready!"
REMIND_LATER_DELAY = timedelta(hours=1)
NOTIFICATION_RETENTION = timedelta(days=7)


def tier_for_duration(duration: timedelta) -> CapsuleTier:
    if duration >= GOLD_THRESHOLD:
        return CapsuleTier.GOLD
    if duration >= SILVER_THRESHOLD:
        return CapsuleTier.SILVER
    return CapsuleTier.BRONZE


def format_time_remaining(remaining: timedelta) -> str:
    seconds = int(remaining.total_seconds())
    if seconds <= 0:
        return READY_MESSAGE
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60
    if days > 0:
        return f"{days}d {hours}h"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _release_at(memory: MemoryResponse) -> datetime:
    if memory.release_at is None:
        raise ValidationError(f"Memory {memory.id} has no release time", ValidationReason.MISSING_FIELD)
    return as_utc(memory.release_at)


class CapsuleScheduler:
    """
    Scheduled-memory ("capsule") rules.

    Locked and unlockable are never stored: both derive from release_at and
    the injected clock on every call. The only state held across calls is the
    memory ids whose unlock notification has already been upserted, kept only
    for capsules released within the retention window.
    """

    def __init__(
        self,
        store: MemoryStore,
        notifications: NotificationCenter,
        clock: Clock = utc_now,
        timeout: Optional[float] = None,
        attachment_wait: Optional[float] = 20.0,
        retention: timedelta = NOTIFICATION_RETENTION,
    ):
        self.store = store
        self.notifications = notifications
        self.clock = clock
        self.timeout = timeout
        self.attachment_wait = attachment_wait
        self.retention = retention
        self._fired: Dict[str, datetime] = {}

    def _now(self, now: Optional[datetime]) -> datetime:
        return as_utc(now) if now is not None else as_utc(self.clock())

    def validate_release(self, release_at: datetime, now: Optional[datetime] = None) -> datetime:
        release_at = as_utc(release_at)
        if release_at <= self._now(now):
            raise ValidationError("Release time must be in the future", ValidationReason.INVALID_SCHEDULE)
        return release_at

    async def schedule_memory(
        self,
        owner_id: str,
        payload: MemoryPayload,
        release_at: datetime,
        attachments: Sequence[Attachment] = (),
        timeout: Optional[float] = None,
    ) -> MemoryResponse:
        if not (payload.title or "").strip():
            raise ValidationError("Title is required", ValidationReason.MISSING_FIELD)
        now = self._now(None)
        release_at = self.validate_release(release_at, now)
        memory = await remote_call(
            self.store.insert_memory(
                owner_id, payload, MemoryVisibility.SCHEDULED, release_at, now, list(attachments)
            ),
            "insert_memory",
            effective_timeout(timeout, self.timeout),
        )
        logger.info(f"Scheduled memory {memory.id} for {release_at.isoformat()} ({self.tier(memory).value})")
        return memory

    async def create_local_memory(
        self,
        owner_id: str,
        payload: MemoryPayload,
        visibility: MemoryVisibility,
        release_at: Optional[datetime] = None,
        attachment_saves: Sequence[AttachmentSave] = (),
        timeout: Optional[float] = None,
    ) -> MemoryResponse:
        """Save attachments concurrently with a bounded wait, then persist the memory with whatever finished."""
        if visibility == MemoryVisibility.SCHEDULED:
            if release_at is None:
                raise ValidationError("Scheduled memories need a release time", ValidationReason.INVALID_SCHEDULE)
            self.validate_release(release_at)
        attachments = await collect_attachments(attachment_saves, self.attachment_wait)
        if visibility == MemoryVisibility.SCHEDULED:
            return await self.schedule_memory(owner_id, payload, release_at, attachments, timeout)
        memory = await remote_call(
            self.store.insert_memory(owner_id, payload, visibility, None, self._now(None), attachments),
            "insert_memory",
            effective_timeout(timeout, self.timeout),
        )
        logger.info(f"Created {visibility.value} memory {memory.id} with {len(attachments)} attachment(s)")
        return memory

    async def get_capsule(self, memory_id: str, timeout: Optional[float] = None) -> MemoryResponse:
        memory = await remote_call(
            self.store.get_memory(memory_id), "get_memory", effective_timeout(timeout, self.timeout)
        )
        if memory is None or memory.visibility != MemoryVisibility.SCHEDULED:
            raise NotFoundError(f"Scheduled memory {memory_id} not found")
        return memory

    async def list_capsules(self, user_id: Optional[str] = None, timeout: Optional[float] = None) -> List[MemoryResponse]:
        return await remote_call(
            self.store.list_scheduled_memories(user_id),
            "list_scheduled_memories",
            effective_timeout(timeout, self.timeout),
        )

    def is_ready(self, memory: MemoryResponse, now: Optional[datetime] = None) -> bool:
        return self._now(now) >= _release_at(memory)

    def status(self, memory: MemoryResponse, now: Optional[datetime] = None) -> CapsuleStatus:
        return CapsuleStatus.UNLOCKABLE if self.is_ready(memory, now) else CapsuleStatus.LOCKED

    def progress_percentage(self, memory: MemoryResponse, now: Optional[datetime] = None) -> float:
        created_at = as_utc(memory.created_at)
        total = (_release_at(memory) - created_at).total_seconds()
        if total <= 0:
            return 0.0
        elapsed = (self._now(now) - created_at).total_seconds()
        return min(1.0, max(0.0, elapsed / total))

    def tier(self, memory: MemoryResponse) -> CapsuleTier:
        return tier_for_duration(_release_at(memory) - as_utc(memory.created_at))

    def time_remaining(self, memory: MemoryResponse, now: Optional[datetime] = None) -> timedelta:
        return max(timedelta(0), _release_at(memory) - self._now(now))

    def preview(self, memory: MemoryResponse, now: Optional[datetime] = None) -> CapsuleView:
        now = self._now(now)
        remaining = self.time_remaining(memory, now)
        ready = self.is_ready(memory, now)
        return CapsuleView(
            memory=memory,
            status=CapsuleStatus.UNLOCKABLE if ready else CapsuleStatus.LOCKED,
            is_ready=ready,
            progress=self.progress_percentage(memory, now),
            tier=self.tier(memory),
            seconds_remaining=remaining.total_seconds(),
            time_remaining=format_time_remaining(remaining),
        )

    def upsert_unlock_notification(self, memory: MemoryResponse) -> NotificationRequest:
        """Leave exactly one pending unlock notification for this memory."""
        identifier = capsule_ready_identifier(memory.id)
        self.notifications.cancel_pending([identifier])
        request = NotificationRequest(
            identifier=identifier,
            title=READY_TITLE,
            body=f"Your memory '{memory.title}' is ready to open!",
            fire_at=_release_at(memory),
            payload={"memory_id": memory.id, "memory_title": memory.title, "user_id": memory.user_id},
        )
        self.notifications.add(request)
        return request

    def cancel_unlock_notification(self, memory_id: str) -> None:
        identifiers = {capsule_ready_identifier(memory_id)}
        identifiers.update(r.identifier for r in self._pending_for_memory(memory_id))
        self.notifications.cancel_pending(sorted(identifiers))
        self._fired.pop(memory_id, None)

    def _pending_for_memory(self, memory_id: str, user_id: Optional[str] = None) -> List[NotificationRequest]:
        return [
            r for r in self.notifications.pending()
            if r.payload.get("memory_id") == memory_id
            and (user_id is None or r.payload.get("user_id") == user_id)
        ]

    def notifications_for(self, user_id: str, now: Optional[datetime] = None) -> List[NotificationRequest]:
        """Notifications for this user's capsules that have come due, oldest first."""
        now = self._now(now)
        due = [
            r for r in self.notifications.pending()
            if r.payload.get("user_id") == user_id and as_utc(r.fire_at) <= now
        ]
        return sorted(due, key=lambda r: as_utc(r.fire_at))

    def acknowledge_notification(
        self,
        user_id: str,
        memory_id: str,
        action: NotificationAction,
        now: Optional[datetime] = None,
    ) -> Optional[NotificationRequest]:
        """
        Clear a capsule's pending notifications once the owner has seen them.

        REMIND_LATER queues a single reminder an hour from now and returns it.
        The memory stays marked as fired either way, so the poll does not
        bring the original notification back.
        """
        now = self._now(now)
        requests = self._pending_for_memory(memory_id, user_id)
        if not requests:
            raise NotFoundError(f"No pending notification for memory {memory_id}")
        self.notifications.cancel_pending([r.identifier for r in requests])
        if action == NotificationAction.OPEN:
            logger.info(f"Unlock notification for memory {memory_id} opened")
            return None

        original = requests[0]
        reminder = NotificationRequest(
            identifier=capsule_reminder_identifier(memory_id, now),
            title=f"Reminder: {READY_TITLE}",
            body=original.body,
            fire_at=now + REMIND_LATER_DELAY,
            category=original.category,
            payload=dict(original.payload),
        )
        self.notifications.add(reminder)
        logger.info(f"Unlock notification for memory {memory_id} snoozed until {reminder.fire_at.isoformat()}")
        return reminder

    def _prune(self, now: datetime) -> None:
        horizon = now - self.retention
        expired = [memory_id for memory_id, release_at in self._fired.items() if release_at < horizon]
        for memory_id in expired:
            del self._fired[memory_id]
        self.notifications.prune(horizon)

    async def poll(
        self,
        memories: Optional[Sequence[MemoryResponse]] = None,
        user_id: Optional[str] = None,
    ) -> List[MemoryResponse]:
        """Upsert notifications for capsules that became ready since the previous poll."""
        if memories is None:
            memories = await self.list_capsules(user_id)
        now = self._now(None)
        self._prune(now)
        horizon = now - self.retention
        fired = []
        for memory in memories:
            if memory.release_at is None or memory.id in self._fired:
                continue
            release_at = as_utc(memory.release_at)
            # Capsules released before the retention window are not announced again
            if not self.is_ready(memory, now) or release_at < horizon:
                continue
            try:
                self.upsert_unlock_notification(memory)
            except Exception as e:
                logger.error(f"Could not upsert unlock notification for memory {memory.id}: {str(e)}")
                continue
            self._fired[memory.id] = release_at
            fired.append(memory)
        if fired:
            logger.info(f"{len(fired)} capsule(s) became ready to open")
        return fired

    async def run(self, poll_interval: float = 60.0, user_id: Optional[str] = None) -> None:
        """Poll until cancelled. A failed poll is logged and retried on the next tick."""
        while True:
            try:
                await self.poll(user_id=user_id)
            except Exception as e:
                logger.error(f"Error in capsule unlock poll: {str(e)}")
            await asyncio.sleep(poll_interval)
