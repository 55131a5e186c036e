"""
Background Scheduler

APScheduler jobs running inside the API process:
- notification queue sweep (interval)
- inactive device cleanup (daily, 03:00 UTC)
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from starlette.concurrency import run_in_threadpool

from ..config import settings
from ..database import SessionLocal
from .device_registry import cleanup_inactive_devices
from .fcm_client import get_push_client
from .notification_queue import NotificationQueueProcessor

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None
_last_runs: Dict[str, Dict] = {}

SCHEDULER_TIMEZONE = "UTC"


def sweep_notification_queue() -> Dict:
    db = SessionLocal()
    try:
        return NotificationQueueProcessor(db, get_push_client()).process_batch()
    finally:
        db.close()


def sweep_inactive_devices() -> Dict:
    db = SessionLocal()
    try:
        deleted = cleanup_inactive_devices(db, settings.device_inactive_days)
        return {"deleted": deleted}
    finally:
        db.close()


async def run_notification_sweep_job():
    try:
        result = await run_in_threadpool(sweep_notification_queue)
        _last_runs["notification_sweep"] = {"at": datetime.utcnow().isoformat(), "result": result}
    except Exception as e:
        logger.error(f"Notification sweep job failed: {e}")


async def run_device_cleanup_job():
    logger.info("Running scheduled device cleanup...")
    try:
        result = await run_in_threadpool(sweep_inactive_devices)
        _last_runs["device_cleanup"] = {"at": datetime.utcnow().isoformat(), "result": result}
    except Exception as e:
        logger.error(f"Device cleanup job failed: {e}")


def start_scheduler() -> bool:
    """
    Start the background jobs.

    Returns:
        True if scheduler started successfully, False otherwise
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler is already running")
        return True

    try:
        _scheduler = AsyncIOScheduler(timezone=SCHEDULER_TIMEZONE)

        _scheduler.add_job(
            run_notification_sweep_job,
            IntervalTrigger(seconds=settings.notification_sweep_interval_seconds),
            id="notification_sweep",
            name="Notification queue sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )

        _scheduler.add_job(
            run_device_cleanup_job,
            CronTrigger(hour=3, minute=0, timezone=SCHEDULER_TIMEZONE),
            id="device_cleanup",
            name="Inactive device cleanup",
            replace_existing=True
        )

        _scheduler.start()
        logger.info(
            f"Scheduler started (queue sweep every {settings.notification_sweep_interval_seconds}s, "
            f"device cleanup daily 03:00 {SCHEDULER_TIMEZONE})"
        )
        return True

    except Exception as e:
        logger.error(f"Failed to start scheduler: {e}")
        return False


def stop_scheduler() -> bool:
    global _scheduler

    if _scheduler is None:
        return True

    try:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Scheduler stopped")
        return True
    except Exception as e:
        logger.error(f"Failed to stop scheduler: {e}")
        return False


def get_scheduler_status() -> Dict:
    status = {
        "running": False,
        "timezone": SCHEDULER_TIMEZONE,
        "jobs": [],
        "last_runs": dict(_last_runs),
    }

    if _scheduler is not None and _scheduler.running:
        status["running"] = True
        for job in _scheduler.get_jobs():
            status["jobs"].append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None
            })

    return status
