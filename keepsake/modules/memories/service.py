import logging
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from keepsake.core.errors import (
    AuthorizationError, NotFoundError, RemoteError, ValidationError, ValidationReason
)
from keepsake.core.remote import effective_timeout, remote_call
from keepsake.modules.capsules.attachments import AttachmentSave
from keepsake.modules.capsules.schemas import (
    CapsuleView, MemoryPayload, MemoryResponse, MemoryVisibility
)
from keepsake.modules.capsules.service import CapsuleScheduler
from keepsake.modules.groups.membership import MembershipView

logger = logging.getLogger(__name__)


def _unique(group_ids: Iterable[str]) -> List[str]:
    seen = []
    for group_id in group_ids:
        if group_id and group_id not in seen:
            seen.append(group_id)
    return seen


class MemoryService:
    """
    Memory creation with attachments, and sharing memories with groups.

    A memory reaches a group only through a memory_groups link written by its
    owner while a member of that group. Sharing is idempotent.
    """

    def __init__(self, scheduler: CapsuleScheduler, membership: MembershipView, timeout: Optional[float] = None):
        self.scheduler = scheduler
        self.store = scheduler.store
        self.membership = membership
        self.timeout = timeout

    async def _remote(self, awaitable, operation: str, timeout: Optional[float]):
        return await remote_call(awaitable, operation, effective_timeout(timeout, self.timeout))

    async def _require_membership(self, group_ids: Sequence[str], user_id: str, timeout: Optional[float]) -> None:
        for group_id in group_ids:
            if not await self.membership.is_member(group_id, user_id, timeout):
                raise AuthorizationError(f"You must be a member of group {group_id} to see or share its memories")

    async def _owned_memory(self, memory_id: str, actor_id: str, timeout: Optional[float]) -> MemoryResponse:
        memory = await self._remote(self.store.get_memory(memory_id), "get_memory", timeout)
        if memory is None:
            raise NotFoundError(f"Memory {memory_id} not found")
        if memory.user_id != actor_id:
            raise AuthorizationError("Only the memory's owner can change where it is shared")
        return memory

    async def create(
        self,
        owner_id: str,
        payload: MemoryPayload,
        visibility: MemoryVisibility,
        release_at: Optional[datetime] = None,
        group_ids: Sequence[str] = (),
        attachment_saves: Sequence[AttachmentSave] = (),
        timeout: Optional[float] = None,
    ) -> MemoryResponse:
        """Create a memory, saving attachments first, and link it to group_ids."""
        group_ids = _unique(group_ids)
        if visibility == MemoryVisibility.GROUP and not group_ids:
            raise ValidationError("Group memories need at least one group", ValidationReason.MISSING_FIELD)
        await self._require_membership(group_ids, owner_id, timeout)

        memory = await self.scheduler.create_local_memory(
            owner_id, payload, visibility, release_at, attachment_saves, timeout
        )
        if group_ids:
            await self._link_new_memory(memory, group_ids, timeout)
        return memory

    async def schedule_for_groups(
        self,
        owner_id: str,
        payload: MemoryPayload,
        release_at: datetime,
        group_ids: Sequence[str],
        attachment_saves: Sequence[AttachmentSave] = (),
        timeout: Optional[float] = None,
    ) -> MemoryResponse:
        if not _unique(group_ids):
            raise ValidationError("Choose at least one group", ValidationReason.MISSING_FIELD)
        return await self.create(
            owner_id, payload, MemoryVisibility.SCHEDULED, release_at, group_ids, attachment_saves, timeout
        )

    async def _link_new_memory(self, memory: MemoryResponse, group_ids: List[str], timeout: Optional[float]) -> None:
        try:
            await self._remote(self.store.link_groups(memory.id, group_ids, memory.user_id), "link_groups", timeout)
        except RemoteError:
            # Half the request succeeded; drop the memory so a retry does not leave a duplicate
            try:
                await self._remote(self.store.delete_memory(memory.id), "delete_memory", timeout)
                logger.warning(f"Removed memory {memory.id} after linking it to groups failed")
            except RemoteError as e:
                logger.error(f"Could not remove unlinked memory {memory.id}: {e.detail}")
            raise
        logger.info(f"Memory {memory.id} shared with {len(group_ids)} group(s)")

    async def share(
        self, memory_id: str, group_ids: Sequence[str], actor_id: str, timeout: Optional[float] = None
    ) -> List[str]:
        group_ids = _unique(group_ids)
        if not group_ids:
            raise ValidationError("Choose at least one group", ValidationReason.MISSING_FIELD)
        await self._owned_memory(memory_id, actor_id, timeout)
        await self._require_membership(group_ids, actor_id, timeout)
        await self._remote(self.store.link_groups(memory_id, group_ids, actor_id), "link_groups", timeout)
        logger.info(f"Memory {memory_id} shared with groups {group_ids}")
        return await self._remote(self.store.list_memory_group_ids(memory_id), "list_memory_group_ids", timeout)

    async def unshare(
        self, memory_id: str, group_id: str, actor_id: str, timeout: Optional[float] = None
    ) -> List[str]:
        await self._owned_memory(memory_id, actor_id, timeout)
        if await self._remote(self.store.unlink_group(memory_id, group_id), "unlink_group", timeout):
            logger.info(f"Memory {memory_id} no longer shared with group {group_id}")
        return await self._remote(self.store.list_memory_group_ids(memory_id), "list_memory_group_ids", timeout)

    async def memory_groups(self, memory_id: str, actor_id: str, timeout: Optional[float] = None) -> List[str]:
        await self._owned_memory(memory_id, actor_id, timeout)
        return await self._remote(self.store.list_memory_group_ids(memory_id), "list_memory_group_ids", timeout)

    async def _shared_with(self, group_id: str, actor_id: str, timeout: Optional[float]) -> List[MemoryResponse]:
        await self._require_membership([group_id], actor_id, timeout)
        return await self._remote(self.store.list_group_memories(group_id), "list_group_memories", timeout)

    async def group_memories(
        self, group_id: str, actor_id: str, timeout: Optional[float] = None
    ) -> List[MemoryResponse]:
        """Memories shared with the group, newest first. Capsules are listed by group_capsules."""
        memories = await self._shared_with(group_id, actor_id, timeout)
        return [m for m in memories if m.visibility != MemoryVisibility.SCHEDULED]

    async def group_capsules(
        self, group_id: str, actor_id: str, timeout: Optional[float] = None
    ) -> List[CapsuleView]:
        memories = await self._shared_with(group_id, actor_id, timeout)
        capsules = [
            m for m in memories
            if m.visibility == MemoryVisibility.SCHEDULED and m.release_at is not None
        ]
        now = self.scheduler.clock()
        return [self.scheduler.preview(m, now) for m in sorted(capsules, key=lambda m: m.release_at)]
