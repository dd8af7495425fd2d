"""
RELAY Chat - Scheduler Jobs

Periodic message expiry on its own APScheduler BackgroundScheduler.
"""
import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from .config import get_config
from .models import ChatStore

logger = logging.getLogger(__name__)

CLEANUP_JOB_ID = "chat_message_cleanup"

_scheduler: Optional[BackgroundScheduler] = None


def get_cleanup_scheduler() -> BackgroundScheduler:
    """Get or create the singleton cleanup scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = BackgroundScheduler(
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 120}
        )
    return _scheduler


def run_message_cleanup(store: ChatStore) -> int:
    """Drop messages older than the configured age. Returns how many went."""
    max_age_ms = int(get_config("message_max_age_hours")) * 60 * 60 * 1000
    try:
        removed = store.expire_old_messages(max_age_ms=max_age_ms)
    except Exception as e:
        logger.error(f"[CLEANUP] Message cleanup failed: {e}")
        return 0

    if removed:
        logger.info(f"[CLEANUP] Removed {removed} expired message(s)")
    else:
        logger.debug("[CLEANUP] Nothing to remove")
    return removed


def init_cleanup_scheduler(store: ChatStore) -> Optional[BackgroundScheduler]:
    """Sweep once now, then register the interval job and start the scheduler."""
    if not get_config("cleanup_enabled"):
        logger.info("[CLEANUP] Disabled by configuration")
        return None

    run_message_cleanup(store)

    scheduler = get_cleanup_scheduler()
    if scheduler.running:
        return scheduler

    scheduler.add_job(
        run_message_cleanup,
        "interval",
        args=[store],
        minutes=int(get_config("cleanup_interval_minutes")),
        id=CLEANUP_JOB_ID,
        replace_existing=True,
    )

    scheduler.start()
    logger.info(f"[CLEANUP] Scheduler started, every {get_config('cleanup_interval_minutes')} min")
    return scheduler


def shutdown_cleanup_scheduler():
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("[CLEANUP] Scheduler stopped")
    _scheduler = None
