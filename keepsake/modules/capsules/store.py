from datetime import datetime
from typing import List, Optional

from supabase import AsyncClient

from keepsake.modules.capsules.schemas import (
    Attachment, AttachmentKind, MemoryPayload, MemoryResponse, MemoryVisibility
)


MEMORY_COLUMNS = "*, memory_media(id, media_url, media_type, sort_order, created_at)"


class MemoryStore:
    async def insert_memory(
        self,
        owner_id: str,
        payload: MemoryPayload,
        visibility: MemoryVisibility,
        release_at: Optional[datetime],
        created_at: datetime,
        attachments: List[Attachment],
    ) -> MemoryResponse:
        raise NotImplementedError

    async def get_memory(self, memory_id: str) -> Optional[MemoryResponse]:
        raise NotImplementedError

    async def list_scheduled_memories(self, user_id: Optional[str] = None) -> List[MemoryResponse]:
        """Scheduled memories ordered by release time; all owners when user_id is None."""
        raise NotImplementedError

    async def delete_memory(self, memory_id: str) -> bool:
        """Remove a memory with its media rows and group links."""
        raise NotImplementedError

    async def link_groups(self, memory_id: str, group_ids: List[str], shared_by: str) -> None:
        """Link a memory to groups; links that already exist are left alone."""
        raise NotImplementedError

    async def unlink_group(self, memory_id: str, group_id: str) -> bool:
        raise NotImplementedError

    async def list_memory_group_ids(self, memory_id: str) -> List[str]:
        raise NotImplementedError

    async def list_group_memories(self, group_id: str) -> List[MemoryResponse]:
        """Memories linked to the group, newest first."""
        raise NotImplementedError


class SupabaseMemoryStore(MemoryStore):
    def __init__(self, supabase: AsyncClient):
        self.supabase = supabase

    @staticmethod
    def _memory(row: dict) -> MemoryResponse:
        media = sorted(row.get("memory_media") or [], key=lambda m: m.get("sort_order") or 0)
        attachments = [
            Attachment(
                id=m["id"],
                kind=AttachmentKind(m["media_type"]),
                filename=m["media_url"],
                created_at=m["created_at"],
            )
            for m in media
            if m.get("media_type") in (AttachmentKind.IMAGE.value, AttachmentKind.AUDIO.value)
        ]
        data = {k: v for k, v in row.items() if k != "memory_media"}
        return MemoryResponse(**data, attachments=attachments)

    async def insert_memory(
        self,
        owner_id: str,
        payload: MemoryPayload,
        visibility: MemoryVisibility,
        release_at: Optional[datetime],
        created_at: datetime,
        attachments: List[Attachment],
    ) -> MemoryResponse:
        result = await self.supabase.table("memories").insert({
            "user_id": owner_id,
            "title": payload.title,
            "body": payload.body,
            "category": payload.category,
            "year": payload.year,
            "visibility": visibility.value,
            "release_at": release_at.isoformat() if release_at else None,
            "created_at": created_at.isoformat(),
        }).execute()
        if not result.data:
            raise RuntimeError("Insert into memories returned no rows")
        row = result.data[0]

        if attachments:
            await self.supabase.table("memory_media").insert([
                {
                    "id": attachment.id,
                    "memory_id": row["id"],
                    "media_url": attachment.filename,
                    "media_type": attachment.kind.value,
                    "sort_order": index,
                    "created_at": attachment.created_at.isoformat(),
                }
                for index, attachment in enumerate(attachments)
            ]).execute()

        return MemoryResponse(**row, attachments=attachments)

    async def get_memory(self, memory_id: str) -> Optional[MemoryResponse]:
        result = await self.supabase.table("memories")\
            .select(MEMORY_COLUMNS)\
            .eq("id", memory_id)\
            .limit(1)\
            .execute()
        if not result.data:
            return None
        return self._memory(result.data[0])

    async def list_scheduled_memories(self, user_id: Optional[str] = None) -> List[MemoryResponse]:
        query = self.supabase.table("memories")\
            .select(MEMORY_COLUMNS)\
            .eq("visibility", MemoryVisibility.SCHEDULED.value)\
            .not_.is_("release_at", "null")
        if user_id:
            query = query.eq("user_id", user_id)
        result = await query.order("release_at").execute()
        return [self._memory(row) for row in result.data or []]

    async def delete_memory(self, memory_id: str) -> bool:
        await self.supabase.table("memory_groups")\
            .delete()\
            .eq("memory_id", memory_id)\
            .execute()
        await self.supabase.table("memory_media")\
            .delete()\
            .eq("memory_id", memory_id)\
            .execute()
        result = await self.supabase.table("memories")\
            .delete()\
            .eq("id", memory_id)\
            .execute()
        return len(result.data) > 0

    async def link_groups(self, memory_id: str, group_ids: List[str], shared_by: str) -> None:
        if not group_ids:
            return
        await self.supabase.table("memory_groups").upsert(
            [{"memory_id": memory_id, "group_id": group_id, "shared_by": shared_by} for group_id in group_ids],
            on_conflict="memory_id,group_id",
            ignore_duplicates=True,
        ).execute()

    async def unlink_group(self, memory_id: str, group_id: str) -> bool:
        result = await self.supabase.table("memory_groups")\
            .delete()\
            .eq("memory_id", memory_id)\
            .eq("group_id", group_id)\
            .execute()
        return len(result.data) > 0

    async def list_memory_group_ids(self, memory_id: str) -> List[str]:
        result = await self.supabase.table("memory_groups")\
            .select("group_id")\
            .eq("memory_id", memory_id)\
            .execute()
        return [row["group_id"] for row in result.data or []]

    async def list_group_memories(self, group_id: str) -> List[MemoryResponse]:
        result = await self.supabase.table("memory_groups")\
            .select(f"memories!inner({MEMORY_COLUMNS})")\
            .eq("group_id", group_id)\
            .execute()
        memories = [self._memory(row["memories"]) for row in result.data or [] if row.get("memories")]
        return sorted(memories, key=lambda m: m.created_at, reverse=True)
