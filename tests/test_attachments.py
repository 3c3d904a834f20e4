import time
from datetime import timedelta

import pytest

from keepsake.core.errors import ValidationError, ValidationReason
from keepsake.modules.capsules.attachments import LocalAttachmentStore, collect_attachments
from keepsake.modules.capsules.schemas import AttachmentKind, MemoryPayload, MemoryVisibility
from keepsake.modules.capsules.service import CapsuleScheduler


@pytest.fixture
def attachment_store(tmp_path):
    return LocalAttachmentStore(str(tmp_path / "attachments"))


class TestLocalAttachmentStore:
    def test_save_image(self, attachment_store):
        attachment = attachment_store.save_image(b"\xff\xd8jpeg")

        assert attachment.kind == AttachmentKind.IMAGE
        assert attachment.filename.startswith("image_")
        assert attachment.filename.endswith(".jpg")
        assert attachment_store.path_for(attachment.filename).read_bytes() == b"\xff\xd8jpeg"

    def test_save_audio_keeps_extension(self, attachment_store):
        attachment = attachment_store.save_audio(b"audio", "voice.caf")

        assert attachment.kind == AttachmentKind.AUDIO
        assert attachment.filename.endswith(".caf")
        assert attachment_store.path_for(attachment.filename).read_bytes() == b"audio"

    def test_save_audio_without_name_defaults_to_m4a(self, attachment_store):
        assert attachment_store.save_audio(b"audio").filename.endswith(".m4a")

    def test_delete(self, attachment_store):
        attachment = attachment_store.save_image(b"x")
        assert attachment_store.delete(attachment.filename) is True
        assert attachment_store.delete(attachment.filename) is False


class TestCollectAttachments:
    @pytest.mark.asyncio
    async def test_nothing_to_save(self):
        assert await collect_attachments([], timeout=1.0) == []

    @pytest.mark.asyncio
    async def test_keeps_submission_order(self, attachment_store):
        def slow_first():
            time.sleep(0.05)
            return attachment_store.save_image(b"first")

        saves = [slow_first, lambda: attachment_store.save_image(b"second")]
        attachments = await collect_attachments(saves, timeout=2.0)

        contents = [attachment_store.path_for(a.filename).read_bytes() for a in attachments]
        assert contents == [b"first", b"second"]

    @pytest.mark.asyncio
    async def test_partial_success_on_timeout_and_failure(self, attachment_store):
        def too_slow():
            time.sleep(0.5)
            return attachment_store.save_image(b"late")

        def broken():
            raise OSError("disk full")

        saves = [lambda: attachment_store.save_image(b"quick"), too_slow, broken]
        started = time.monotonic()
        attachments = await collect_attachments(saves, timeout=0.1)

        assert time.monotonic() - started < 0.45
        assert len(attachments) == 1
        assert attachment_store.path_for(attachments[0].filename).read_bytes() == b"quick"


class TestCreateLocalMemory:
    @pytest.mark.asyncio
    async def test_memory_created_with_completed_attachments(self, memory_store, notifications, clock, attachment_store):
        scheduler = CapsuleScheduler(memory_store, notifications, clock=clock, attachment_wait=0.1)

        def too_slow():
            time.sleep(0.5)
            return attachment_store.save_image(b"late")

        memory = await scheduler.create_local_memory(
            "u1",
            MemoryPayload(title="Beach day", body="Sunburn"),
            MemoryVisibility.PRIVATE,
            attachment_saves=[lambda: attachment_store.save_image(b"photo"), too_slow],
        )

        assert memory.visibility == MemoryVisibility.PRIVATE
        assert memory.release_at is None
        assert [a.kind for a in memory.attachments] == [AttachmentKind.IMAGE]

    @pytest.mark.asyncio
    async def test_scheduled_local_memory(self, scheduler, clock, attachment_store):
        memory = await scheduler.create_local_memory(
            "u1",
            MemoryPayload(title="Capsule"),
            MemoryVisibility.SCHEDULED,
            release_at=clock() + timedelta(days=400),
            attachment_saves=[lambda: attachment_store.save_image(b"photo")],
        )

        assert memory.visibility == MemoryVisibility.SCHEDULED
        assert scheduler.tier(memory).value == "gold"
        assert len(memory.attachments) == 1

    @pytest.mark.asyncio
    async def test_invalid_schedule_saves_nothing(self, scheduler, clock, attachment_store, memory_store):
        calls = []

        def save():
            calls.append(1)
            return attachment_store.save_image(b"photo")

        with pytest.raises(ValidationError) as exc:
            await scheduler.create_local_memory(
                "u1",
                MemoryPayload(title="Capsule"),
                MemoryVisibility.SCHEDULED,
                release_at=clock() - timedelta(seconds=1),
                attachment_saves=[save],
            )
        assert exc.value.reason == ValidationReason.INVALID_SCHEDULE
        assert calls == []
        assert memory_store.memories == {}

    @pytest.mark.asyncio
    async def test_scheduled_without_release_time(self, scheduler):
        with pytest.raises(ValidationError):
            await scheduler.create_local_memory("u1", MemoryPayload(title="Capsule"), MemoryVisibility.SCHEDULED)
