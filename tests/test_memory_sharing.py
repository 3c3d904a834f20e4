from datetime import timedelta

import pytest
import pytest_asyncio

from keepsake.core.errors import (
    AuthorizationError, NotFoundError, RemoteError, ValidationError, ValidationReason
)
from keepsake.modules.capsules.schemas import CapsuleStatus, MemoryPayload, MemoryVisibility
from tests.fakes import seed_group


@pytest_asyncio.fixture
async def group_id(group_store):
    return await seed_group(group_store, "u1", others=["u2"])


class TestCreateWithGroups:
    @pytest.mark.asyncio
    async def test_group_memory_is_linked(self, memory_service, memory_store, group_id):
        memory = await memory_service.create(
            "u1", MemoryPayload(title="Picnic"), MemoryVisibility.GROUP, group_ids=[group_id, group_id]
        )

        assert memory_store.links == [(memory.id, group_id)]
        shared = await memory_service.group_memories(group_id, "u2")
        assert [m.id for m in shared] == [memory.id]

    @pytest.mark.asyncio
    async def test_group_memory_needs_a_group(self, memory_service, memory_store):
        with pytest.raises(ValidationError) as exc:
            await memory_service.create("u1", MemoryPayload(title="Picnic"), MemoryVisibility.GROUP)
        assert exc.value.reason == ValidationReason.MISSING_FIELD
        assert memory_store.memories == {}

    @pytest.mark.asyncio
    async def test_only_members_can_share_into_a_group(self, memory_service, memory_store, group_id):
        with pytest.raises(AuthorizationError):
            await memory_service.create(
                "u3", MemoryPayload(title="Gatecrash"), MemoryVisibility.GROUP, group_ids=[group_id]
            )
        assert memory_store.memories == {}

    @pytest.mark.asyncio
    async def test_failed_link_removes_memory(self, memory_service, memory_store, group_id):
        memory_store.failures["link_groups"] = ConnectionError("network down")

        with pytest.raises(RemoteError) as exc:
            await memory_service.create(
                "u1", MemoryPayload(title="Picnic"), MemoryVisibility.GROUP, group_ids=[group_id]
            )
        assert exc.value.operation == "link_groups"
        assert memory_store.memories == {}
        assert memory_store.links == []


class TestScheduleForGroups:
    @pytest.mark.asyncio
    async def test_capsule_visible_to_group_as_preview(self, memory_service, clock, group_id):
        release_at = clock() + timedelta(days=40)

        memory = await memory_service.schedule_for_groups(
            "u1", MemoryPayload(title="Reunion"), release_at, [group_id]
        )

        assert memory.visibility == MemoryVisibility.SCHEDULED
        capsules = await memory_service.group_capsules(group_id, "u2")
        assert [c.memory.id for c in capsules] == [memory.id]
        assert capsules[0].status == CapsuleStatus.LOCKED
        # Capsules are not listed with the group's ordinary memories
        assert await memory_service.group_memories(group_id, "u2") == []

    @pytest.mark.asyncio
    async def test_needs_at_least_one_group(self, memory_service, clock):
        with pytest.raises(ValidationError) as exc:
            await memory_service.schedule_for_groups(
                "u1", MemoryPayload(title="Reunion"), clock() + timedelta(days=1), []
            )
        assert exc.value.reason == ValidationReason.MISSING_FIELD

    @pytest.mark.asyncio
    async def test_deleting_group_drops_links(self, memory_service, manager, memory_store, clock, group_id):
        memory = await memory_service.schedule_for_groups(
            "u1", MemoryPayload(title="Reunion"), clock() + timedelta(days=1), [group_id]
        )

        await manager.delete(group_id, "u1")

        assert memory_store.links == []
        assert memory.id in memory_store.memories


class TestShare:
    @pytest_asyncio.fixture
    async def memory(self, memory_service):
        return await memory_service.create("u1", MemoryPayload(title="Beach"), MemoryVisibility.PRIVATE)

    @pytest.mark.asyncio
    async def test_share_is_idempotent(self, memory_service, memory, group_store, group_id):
        other_group = await group_store.insert_group("Joneses", "JONES1", "u1")
        await group_store.insert_member(other_group.id, "u1", is_admin=True)

        assert await memory_service.share(memory.id, [group_id], "u1") == [group_id]
        assert await memory_service.share(memory.id, [group_id, other_group.id], "u1") == [group_id, other_group.id]
        assert await memory_service.memory_groups(memory.id, "u1") == [group_id, other_group.id]

    @pytest.mark.asyncio
    async def test_only_owner_shares(self, memory_service, memory_store, memory, group_id):
        with pytest.raises(AuthorizationError):
            await memory_service.share(memory.id, [group_id], "u2")
        assert memory_store.links == []

    @pytest.mark.asyncio
    async def test_owner_must_belong_to_group(self, memory_service, memory_store, memory, group_store):
        foreign = await seed_group(group_store, "u9", name="Strangers")
        with pytest.raises(AuthorizationError):
            await memory_service.share(memory.id, [foreign], "u1")
        assert memory_store.links == []

    @pytest.mark.asyncio
    async def test_unknown_memory(self, memory_service, group_id):
        with pytest.raises(NotFoundError):
            await memory_service.share("nope", [group_id], "u1")

    @pytest.mark.asyncio
    async def test_unshare(self, memory_service, memory, group_id):
        await memory_service.share(memory.id, [group_id], "u1")

        assert await memory_service.unshare(memory.id, group_id, "u1") == []
        assert await memory_service.unshare(memory.id, group_id, "u1") == []
        assert await memory_service.group_memories(group_id, "u2") == []

    @pytest.mark.asyncio
    async def test_non_members_cannot_list_group_memories(self, memory_service, group_id):
        with pytest.raises(AuthorizationError):
            await memory_service.group_memories(group_id, "u3")
