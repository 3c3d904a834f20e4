"""In-memory stand-ins for the backing store, notification center and clock."""

import asyncio
import itertools
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from keepsake.modules.capsules.notifications import LocalNotificationCenter
from keepsake.modules.capsules.schemas import (
    Attachment, MemoryPayload, MemoryResponse, MemoryVisibility
)
from keepsake.modules.capsules.store import MemoryStore
from keepsake.modules.groups.schemas import (
    GroupResponse, GroupMemberResponse, JoinRequestResponse, JoinRequestStatus
)
from keepsake.modules.groups.store import GroupStore

EPOCH = datetime(2026, 1, 1, tzinfo=timezone.utc)


class MutableClock:
    def __init__(self, now: datetime = EPOCH):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class InMemoryGroupStore(GroupStore):
    def __init__(self):
        self.groups: Dict[str, dict] = {}
        self.members: Dict[Tuple[str, str], dict] = {}
        self.requests: Dict[str, dict] = {}
        self.memory_links: List[Tuple[str, str]] = []
        self.failures: Dict[str, Exception] = {}
        self.delays: Dict[str, float] = {}
        self.calls: List[str] = []
        self._ids = itertools.count(1)

    async def _enter(self, operation: str):
        self.calls.append(operation)
        if operation in self.delays:
            await asyncio.sleep(self.delays[operation])
        if operation in self.failures:
            raise self.failures.pop(operation)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def _tick(self) -> datetime:
        return EPOCH + timedelta(seconds=next(self._ids))

    def snapshot(self):
        return (
            {k: dict(v) for k, v in self.groups.items()},
            {k: dict(v) for k, v in self.members.items()},
            {k: dict(v) for k, v in self.requests.items()},
        )

    def member_ids(self, group_id: str) -> List[str]:
        return [user_id for (gid, user_id) in self.members if gid == group_id]

    # groups

    async def find_group_by_code(self, code):
        await self._enter("find_group_by_code")
        for group in self.groups.values():
            if group["code"] == code:
                return GroupResponse(**group)
        return None

    async def get_group(self, group_id):
        await self._enter("get_group")
        group = self.groups.get(group_id)
        return GroupResponse(**group) if group else None

    async def list_groups_for_user(self, user_id):
        await self._enter("list_groups_for_user")
        return [GroupResponse(**g) for g in self.groups.values() if (g["id"], user_id) in self.members]

    async def insert_group(self, name, code, admin_id):
        await self._enter("insert_group")
        group = {"id": self._next_id("group"), "name": name, "code": code,
                 "admin_id": admin_id, "created_at": self._tick()}
        self.groups[group["id"]] = group
        return GroupResponse(**group)

    async def delete_group(self, group_id):
        await self._enter("delete_group")
        # links are shared with InMemoryMemoryStore, so filter in place
        self.memory_links[:] = [link for link in self.memory_links if link[1] != group_id]
        self.requests = {k: v for k, v in self.requests.items() if v["group_id"] != group_id}
        self.members = {k: v for k, v in self.members.items() if k[0] != group_id}
        return self.groups.pop(group_id, None) is not None

    async def swap_admin(self, group_id, expected_admin_id, new_admin_id):
        await self._enter("swap_admin")
        group = self.groups.get(group_id)
        if group is None or group["admin_id"] != expected_admin_id:
            return False
        group["admin_id"] = new_admin_id
        return True

    # members

    async def insert_member(self, group_id, user_id, is_admin=False):
        await self._enter("insert_member")
        row = {"group_id": group_id, "user_id": user_id, "name": user_id.title(),
               "email": f"{user_id}@example.com", "is_admin": is_admin, "joined_at": self._tick()}
        self.members[(group_id, user_id)] = row
        return GroupMemberResponse(**row)

    async def list_members(self, group_id):
        await self._enter("list_members")
        return [GroupMemberResponse(**row) for (gid, _), row in self.members.items() if gid == group_id]

    async def get_member(self, group_id, user_id):
        await self._enter("get_member")
        row = self.members.get((group_id, user_id))
        return GroupMemberResponse(**row) if row else None

    async def set_member_admin(self, group_id, user_id, is_admin):
        await self._enter("set_member_admin")
        row = self.members.get((group_id, user_id))
        if row is None:
            return False
        row["is_admin"] = is_admin
        return True

    async def delete_member(self, group_id, user_id):
        await self._enter("delete_member")
        return self.members.pop((group_id, user_id), None) is not None

    async def delete_member_unless_admin(self, group_id, user_id):
        await self._enter("delete_member_unless_admin")
        group = self.groups.get(group_id)
        if group is not None and group["admin_id"] == user_id:
            return False
        return self.members.pop((group_id, user_id), None) is not None

    # join requests

    async def find_pending_request(self, group_id, user_id):
        await self._enter("find_pending_request")
        for row in self.requests.values():
            if row["group_id"] == group_id and row["user_id"] == user_id and row["status"] == "pending":
                return JoinRequestResponse(**row)
        return None

    async def insert_join_request(self, group_id, user_id):
        await self._enter("insert_join_request")
        row = {"id": self._next_id("request"), "group_id": group_id, "user_id": user_id,
               "status": "pending", "requested_at": self._tick()}
        self.requests[row["id"]] = row
        return JoinRequestResponse(**row)

    async def get_join_request(self, request_id):
        await self._enter("get_join_request")
        row = self.requests.get(request_id)
        return JoinRequestResponse(**row) if row else None

    async def list_pending_requests(self, group_id):
        await self._enter("list_pending_requests")
        return [JoinRequestResponse(**row) for row in self.requests.values()
                if row["group_id"] == group_id and row["status"] == "pending"]

    async def review_join_request(self, request_id, status: JoinRequestStatus, reviewer_id):
        await self._enter("review_join_request")
        row = self.requests.get(request_id)
        if row is None or row["status"] != "pending":
            return False
        row.update(status=status.value, reviewed_by=reviewer_id, reviewed_at=self._tick())
        return True


async def seed_group(store: InMemoryGroupStore, admin_id: str, others=(), extra_admins=(), name="Smiths") -> str:
    group = await store.insert_group(name, "SMITH1", admin_id)
    await store.insert_member(group.id, admin_id, is_admin=True)
    for user_id in others:
        await store.insert_member(group.id, user_id, is_admin=user_id in extra_admins)
    store.calls.clear()
    return group.id


def assert_admin_invariant(store: InMemoryGroupStore, group_id: str):
    members = {user_id: row for (gid, user_id), row in store.members.items() if gid == group_id}
    if not members:
        return
    group = store.groups[group_id]
    assert group["admin_id"] in members
    assert any(row["is_admin"] for row in members.values())


class InMemoryMemoryStore(MemoryStore):
    def __init__(self, links: Optional[List[Tuple[str, str]]] = None):
        self.memories: Dict[str, MemoryResponse] = {}
        # (memory_id, group_id) rows of memory_groups
        self.links: List[Tuple[str, str]] = links if links is not None else []
        self.failures: Dict[str, Exception] = {}
        self._ids = itertools.count(1)

    def _maybe_fail(self, operation: str):
        if operation in self.failures:
            raise self.failures.pop(operation)

    async def insert_memory(self, owner_id, payload: MemoryPayload, visibility: MemoryVisibility,
                            release_at: Optional[datetime], created_at: datetime,
                            attachments: List[Attachment]) -> MemoryResponse:
        self._maybe_fail("insert_memory")
        memory = MemoryResponse(
            id=f"memory-{next(self._ids)}",
            user_id=owner_id,
            visibility=visibility,
            release_at=release_at,
            created_at=created_at,
            attachments=list(attachments),
            **payload.model_dump(),
        )
        self.memories[memory.id] = memory
        return memory

    async def get_memory(self, memory_id):
        self._maybe_fail("get_memory")
        return self.memories.get(memory_id)

    async def list_scheduled_memories(self, user_id=None):
        self._maybe_fail("list_scheduled_memories")
        memories = [
            m for m in self.memories.values()
            if m.visibility == MemoryVisibility.SCHEDULED and m.release_at is not None
            and (user_id is None or m.user_id == user_id)
        ]
        return sorted(memories, key=lambda m: m.release_at)

    async def delete_memory(self, memory_id):
        self._maybe_fail("delete_memory")
        self.links[:] = [link for link in self.links if link[0] != memory_id]
        return self.memories.pop(memory_id, None) is not None

    async def link_groups(self, memory_id, group_ids, shared_by):
        self._maybe_fail("link_groups")
        for group_id in group_ids:
            if (memory_id, group_id) not in self.links:
                self.links.append((memory_id, group_id))

    async def unlink_group(self, memory_id, group_id):
        self._maybe_fail("unlink_group")
        if (memory_id, group_id) not in self.links:
            return False
        self.links.remove((memory_id, group_id))
        return True

    async def list_memory_group_ids(self, memory_id):
        self._maybe_fail("list_memory_group_ids")
        return [group_id for (mid, group_id) in self.links if mid == memory_id]

    async def list_group_memories(self, group_id):
        self._maybe_fail("list_group_memories")
        memories = [self.memories[mid] for (mid, gid) in self.links if gid == group_id and mid in self.memories]
        return sorted(memories, key=lambda m: m.created_at, reverse=True)


class FlakyNotificationCenter(LocalNotificationCenter):
    """Refuses to add requests for the memory ids in failing_memory_ids."""

    def __init__(self, failing_memory_ids=()):
        super().__init__()
        self.failing_memory_ids = set(failing_memory_ids)

    def add(self, request):
        if request.payload.get("memory_id") in self.failing_memory_ids:
            raise RuntimeError(f"notification center rejected {request.identifier}")
        super().add(request)
