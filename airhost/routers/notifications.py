"""
Notification Queue Router
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from typing import List, Optional

from ..database import get_db
from ..models.notification_queue import NotificationJob, NotificationJobType
from ..schemas.push import NotificationEnqueueRequest, NotificationJobResponse, QueueProcessResponse
from ..services.fcm_client import get_push_client
from ..services.notification_queue import NotificationQueueProcessor, enqueue_notification
from ..utils.dependencies import Caller, get_caller, require_service


router = APIRouter(prefix="/api/notifications", tags=["Notifications"])

JOB_TYPES = {t.value for t in NotificationJobType}


@router.post("/queue", response_model=NotificationJobResponse, status_code=201)
async def queue_notification(
    request_data: NotificationEnqueueRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller)
):
    """
    Add a notification job.

    Hosts can only queue for themselves; the service key may target any
    recipient.
    """
    if request_data.type not in JOB_TYPES:
        raise HTTPException(status_code=400, detail=f"Unknown notification type: {request_data.type}")

    if caller.is_service:
        recipient_id = request_data.recipient_id
        if not recipient_id:
            raise HTTPException(status_code=400, detail="recipient_id is required")
    else:
        if request_data.recipient_id and request_data.recipient_id != caller.host_id:
            raise HTTPException(status_code=403, detail="Cannot queue notifications for another host")
        recipient_id = caller.host_id

    job = enqueue_notification(
        db,
        recipient_id=recipient_id,
        title=request_data.title,
        body=request_data.body,
        data=request_data.data,
        type=request_data.type,
        conversation_id=request_data.conversation_id,
        message_id=request_data.message_id,
        scheduled_at=request_data.scheduled_at
    )
    db.commit()
    db.refresh(job)
    return job


@router.get("/queue", response_model=List[NotificationJobResponse])
async def list_notification_jobs(
    status: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller)
):
    query = db.query(NotificationJob)
    if not caller.is_service:
        query = query.filter(NotificationJob.recipient_id == caller.host_id)
    if status:
        query = query.filter(NotificationJob.status == status)
    return query.order_by(NotificationJob.created_at.desc()).limit(limit).all()


@router.post("/process", response_model=QueueProcessResponse)
async def process_notification_queue(
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: Session = Depends(get_db),
    _service: Caller = Depends(require_service),
    push_client=Depends(get_push_client)
):
    """Run one queue sweep now (same work as the scheduled job)"""
    processor = NotificationQueueProcessor(db, push_client)
    result = await run_in_threadpool(processor.process_batch, limit)
    return QueueProcessResponse(**result)
