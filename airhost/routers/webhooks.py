"""
Lodgify Webhook Endpoints

POST /api/webhooks/lodgify/booking-webhook?host_id=...
POST /api/webhooks/lodgify/message-webhook?host_id=...

Both verify the ms-signature header against the host's per-subscription
secret before anything else. The raw body is read once and the same bytes
are used for verification and parsing.
"""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..config import settings
from ..database import get_db
from ..services.emergency_analysis import run_emergency_analysis
from ..services.fcm_client import get_push_client
from ..services.webhook_router import LodgifyWebhookRouter, WebhookError
from ..utils.audit_logger import get_client_ip, get_request_id
from ..utils.logging_config import host_id_var
from ..utils.rate_limiter import get_rate_limit, get_webhook_rate_key, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks/lodgify", tags=["Lodgify Webhooks"])


@router.post("/booking-webhook")
@limiter.limit(get_rate_limit("webhook"), key_func=get_webhook_rate_key)
async def booking_webhook(
    request: Request,
    host_id: Optional[str] = Query(None),
    ms_signature: Optional[str] = Header(None, alias="ms-signature"),
    db: Session = Depends(get_db),
    push_client=Depends(get_push_client)
):
    """
    Lodgify booking_change webhook.

    Creates the host's conversation for a new booking together with a
    one-time confirmation message. Redeliveries answer "already exists".
    """
    request_id = get_request_id(request)
    if host_id:
        host_id_var.set(host_id)
    raw_body = await request.body()

    handler = LodgifyWebhookRouter(db, push_client, request_id, get_client_ip(request))
    try:
        result = await run_in_threadpool(handler.handle_booking, raw_body, ms_signature, host_id)
    except WebhookError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message})
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"[{request_id}] Database error on booking webhook")
        return JSONResponse(status_code=500, content={"error": "Database error"})
    except Exception:
        db.rollback()
        logger.exception(f"[{request_id}] Unexpected error on booking webhook")
        return JSONResponse(status_code=500, content={"error": "Internal error"})

    return {
        "message": result.message,
        "conversation_id": result.conversation_id,
    }


@router.post("/message-webhook")
@limiter.limit(get_rate_limit("webhook"), key_func=get_webhook_rate_key)
async def message_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    host_id: Optional[str] = Query(None),
    ms_signature: Optional[str] = Header(None, alias="ms-signature"),
    db: Session = Depends(get_db),
    push_client=Depends(get_push_client)
):
    """
    Lodgify guest_message_received webhook.

    Resolve conversation -> ingest once -> push to the host's devices.
    Emergency analysis of new messages runs after the response is sent.
    """
    request_id = get_request_id(request)
    if host_id:
        host_id_var.set(host_id)
    raw_body = await request.body()

    handler = LodgifyWebhookRouter(db, push_client, request_id, get_client_ip(request))
    try:
        result = await run_in_threadpool(handler.handle_message, raw_body, ms_signature, host_id)
    except WebhookError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={"error": f"ERROR: {e.message}", "status": "error"}
        )
    except SQLAlchemyError:
        db.rollback()
        logger.exception(f"[{request_id}] Database error on message webhook")
        return JSONResponse(
            status_code=500,
            content={"error": "ERROR: Database error", "status": "error"}
        )
    except Exception:
        db.rollback()
        logger.exception(f"[{request_id}] Unexpected error on message webhook")
        return JSONResponse(
            status_code=500,
            content={"error": "ERROR: Internal error", "status": "error"}
        )

    if result.action == "ingested" and settings.emergency_analysis_enabled and result.content:
        background_tasks.add_task(
            run_emergency_analysis,
            host_id,
            result.conversation_id,
            result.message_id,
            result.content
        )

    response = {
        "message": f"SUCCESS: {result.message}",
        "status": "success",
        "conversation_id": result.conversation_id,
    }
    if result.resolution_method:
        response["resolution_method"] = result.resolution_method
    if result.fanout is not None:
        response["notified_devices"] = result.fanout.delivered
    return response
