import asyncio
import logging
import uuid
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from keepsake.modules.capsules.schemas import Attachment, AttachmentKind

logger = logging.getLogger(__name__)

AttachmentSave = Callable[[], Attachment]
DEFAULT_AUDIO_EXTENSION = ".m4a"


class LocalAttachmentStore:
    """App-private file area. Attachments are referenced by filename relative to root."""

    def __init__(self, root: str):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, filename: str) -> Path:
        return self.root / filename

    def save_image(self, content: bytes) -> Attachment:
        filename = f"image_{uuid.uuid4()}.jpg"
        self.path_for(filename).write_bytes(content)
        return Attachment(kind=AttachmentKind.IMAGE, filename=filename)

    def save_audio(self, content: bytes, original_name: Optional[str] = None) -> Attachment:
        extension = Path(original_name).suffix if original_name else ""
        filename = f"audio_{uuid.uuid4()}{extension or DEFAULT_AUDIO_EXTENSION}"
        self.path_for(filename).write_bytes(content)
        return Attachment(kind=AttachmentKind.AUDIO, filename=filename)

    def delete(self, filename: str) -> bool:
        try:
            self.path_for(filename).unlink()
            return True
        except FileNotFoundError:
            return False


async def collect_attachments(saves: Sequence[AttachmentSave], timeout: Optional[float]) -> List[Attachment]:
    """
    Run attachment saves concurrently and wait at most timeout seconds.

    Returns the attachments that finished in time, in submission order. Saves
    that fail or are still running at the deadline are dropped.
    """
    if not saves:
        return []

    tasks = [asyncio.ensure_future(asyncio.to_thread(save)) for save in saves]
    try:
        done, pending = await asyncio.wait(tasks, timeout=timeout)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        raise

    for task in pending:
        task.cancel()
    if pending:
        logger.warning(f"{len(pending)} of {len(tasks)} attachment save(s) did not finish within {timeout}s")

    attachments = []
    for task in tasks:
        if task not in done:
            continue
        error = task.exception()
        if error is not None:
            logger.warning(f"Attachment save failed: {error}")
            continue
        attachments.append(task.result())
    return attachments
