import logging
from datetime import timedelta
from keepsake.config import settings
from keepsake.database.supabase_client import SupabaseClient
from keepsake.modules.capsules.notifications import NotificationCenter
from keepsake.modules.capsules.service import CapsuleScheduler
from keepsake.modules.capsules.store import SupabaseMemoryStore

logger = logging.getLogger(__name__)


async def build_unlock_scheduler(notifications: NotificationCenter) -> CapsuleScheduler:
    """Scheduler for the background poller; uses the service-role client so every owner's capsules are visible."""
    supabase = await SupabaseClient.get_service_client()
    return CapsuleScheduler(
        SupabaseMemoryStore(supabase),
        notifications,
        timeout=settings.remote_timeout_seconds,
        attachment_wait=settings.attachment_wait_seconds,
        retention=timedelta(days=settings.notification_retention_days),
    )


async def capsule_unlock_loop(notifications: NotificationCenter):
    """Background task that periodically upserts unlock notifications for capsules that became ready"""
    scheduler = await build_unlock_scheduler(notifications)
    logger.info(f"Capsule unlock poller started (every {settings.capsule_poll_interval_seconds}s)")
    try:
        await scheduler.run(poll_interval=settings.capsule_poll_interval_seconds)
    finally:
        logger.info("Capsule unlock poller stopped")
