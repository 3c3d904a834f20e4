"""Thread-safe registry of pending local notifications, keyed by request identifier."""
import threading
import logging
from datetime import datetime
from typing import List

from keepsake.core.clock import as_utc
from keepsake.modules.capsules.schemas import NotificationRequest

logger = logging.getLogger(__name__)

CAPSULE_READY_PREFIX = "capsule_ready_"
CAPSULE_REMINDER_PREFIX = "capsule_reminder_"


def capsule_ready_identifier(memory_id: str) -> str:
    return f"{CAPSULE_READY_PREFIX}{memory_id}"


def capsule_reminder_identifier(memory_id: str, requested_at: datetime) -> str:
    return f"{CAPSULE_REMINDER_PREFIX}{memory_id}_{int(requested_at.timestamp())}"


class NotificationCenter:
    def cancel_pending(self, identifiers: List[str]) -> None:
        raise NotImplementedError

    def add(self, request: NotificationRequest) -> None:
        raise NotImplementedError

    def pending(self) -> List[NotificationRequest]:
        raise NotImplementedError

    def prune(self, before: datetime) -> int:
        """Drop requests that fired before the cutoff; returns how many were dropped."""
        raise NotImplementedError


class LocalNotificationCenter(NotificationCenter):
    """
    In-process pending queue. Like a device notification center it does not
    deduplicate: adding the same identifier twice leaves two requests, so
    callers cancel before adding.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: List[NotificationRequest] = []

    def cancel_pending(self, identifiers: List[str]) -> None:
        wanted = set(identifiers)
        with self._lock:
            before = len(self._pending)
            self._pending = [r for r in self._pending if r.identifier not in wanted]
            removed = before - len(self._pending)
        if removed:
            logger.debug(f"Cancelled {removed} pending notification(s) for {sorted(wanted)}")

    def add(self, request: NotificationRequest) -> None:
        with self._lock:
            self._pending.append(request)
        logger.debug(f"Added pending notification {request.identifier} for {request.fire_at}")

    def pending(self) -> List[NotificationRequest]:
        with self._lock:
            return list(self._pending)

    def pending_for(self, identifier: str) -> List[NotificationRequest]:
        with self._lock:
            return [r for r in self._pending if r.identifier == identifier]

    def prune(self, before: datetime) -> int:
        cutoff = as_utc(before)
        with self._lock:
            kept = [r for r in self._pending if as_utc(r.fire_at) >= cutoff]
            dropped = len(self._pending) - len(kept)
            self._pending = kept
        if dropped:
            logger.info(f"Pruned {dropped} notification(s) that fired before {cutoff.isoformat()}")
        return dropped
