"""
Notification Queue Processor

Secondary, asynchronous delivery path for notifications that are not sent
inline by a webhook (emergency alerts, scheduled reminders, manual sends).

Sweep:
1. Pick due jobs: pending/failed, scheduled_at elapsed, attempts < max
2. Deliver to every ACTIVE device of the recipient
3. Any device accepted -> sent; otherwise failed + attempts += 1
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..config import settings
from ..models.notification_queue import NotificationJob, NotificationJobStatus, NotificationJobType
from ..utils.db_helpers import get_pending_with_skip_locked
from ..utils.metrics import record_notification_job
from .notification_fanout import NotificationFanout

logger = logging.getLogger(__name__)


def enqueue_notification(
    db: Session,
    recipient_id: str,
    title: str,
    body: str,
    data: Optional[Dict[str, Any]] = None,
    type: str = NotificationJobType.SYSTEM.value,
    conversation_id: Optional[str] = None,
    message_id: Optional[str] = None,
    scheduled_at: Optional[datetime] = None,
    max_attempts: Optional[int] = None
) -> NotificationJob:
    """Add a notification job. Caller commits."""
    job = NotificationJob(
        recipient_id=recipient_id,
        title=title,
        body=body,
        data=data or {},
        type=type,
        conversation_id=conversation_id,
        message_id=message_id,
        scheduled_at=scheduled_at,
        status=NotificationJobStatus.PENDING.value,
        attempts=0,
        max_attempts=max_attempts or settings.notification_max_attempts,
    )
    db.add(job)
    db.flush()
    logger.info(f"Enqueued {type} notification {job.id} for {recipient_id}")
    return job


class NotificationQueueProcessor:
    def __init__(self, db: Session, push_client, batch_size: Optional[int] = None):
        self.db = db
        self.push_client = push_client
        self.batch_size = batch_size or settings.notification_batch_size

    def get_pending_jobs(self, limit: Optional[int] = None) -> List[NotificationJob]:
        now = datetime.utcnow()
        return get_pending_with_skip_locked(
            self.db,
            NotificationJob,
            (
                NotificationJob.status.in_([
                    NotificationJobStatus.PENDING.value,
                    NotificationJobStatus.FAILED.value
                ])
                & (NotificationJob.attempts < NotificationJob.max_attempts)
                & or_(NotificationJob.scheduled_at.is_(None), NotificationJob.scheduled_at <= now)
            ),
            order_by=NotificationJob.created_at,
            limit=limit or self.batch_size
        )

    def process_job(self, job: NotificationJob) -> bool:
        fanout = NotificationFanout(self.db, self.push_client, source="queue")
        devices = fanout.load_devices(job.recipient_id, active_only=True)

        if not devices:
            self._mark_failed(job, "No active devices for recipient")
            return False

        data = dict(job.data or {})
        data.setdefault("notificationId", job.id)
        data.setdefault("type", job.type)
        if job.conversation_id:
            data.setdefault("conversationId", job.conversation_id)
        if job.message_id:
            data.setdefault("messageId", job.message_id)

        result = fanout.deliver(devices, job.title, job.body, data)

        if result.any_success:
            job.status = NotificationJobStatus.SENT.value
            job.sent_at = datetime.utcnow()
            job.error_message = None
            logger.info(f"Notification {job.id} sent to {result.summary()}")
            return True

        errors = "; ".join(sorted({o.error or o.error_code or "unknown" for o in result.outcomes}))
        self._mark_failed(job, f"All devices failed: {errors}")
        return False

    def _mark_failed(self, job: NotificationJob, error: str) -> None:
        job.attempts = (job.attempts or 0) + 1
        job.status = NotificationJobStatus.FAILED.value
        job.error_message = error[:1000]
        logger.warning(f"Notification {job.id} failed (attempt {job.attempts}/{job.max_attempts}): {error}")

    def process_batch(self, limit: Optional[int] = None) -> Dict:
        """Run one sweep. Each job is committed on its own."""
        result = {"processed": 0, "success": 0, "failed": 0, "errors": []}

        jobs = self.get_pending_jobs(limit)
        for job in jobs:
            job_id = job.id
            result["processed"] += 1
            try:
                if self.process_job(job):
                    result["success"] += 1
                    record_notification_job("sent")
                else:
                    result["failed"] += 1
                    record_notification_job("failed")
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.exception(f"Error processing notification {job_id}")
                result["failed"] += 1
                result["errors"].append(f"{job_id}: {e}")
                record_notification_job("error")

        if result["processed"]:
            logger.info(
                f"Notification sweep: {result['success']} sent, {result['failed']} failed "
                f"of {result['processed']}"
            )
        return result
