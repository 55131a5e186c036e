"""
Push Router

- POST /api/push/send: single push to one FCM token (service key or host token)
- /api/push/devices: the calling host's device registrations
- POST /api/push/devices/cleanup: inactivity sweep (service key)
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..config import settings
from ..database import get_db
from ..schemas.push import (
    DeviceCleanupResponse,
    DeviceRegisterRequest,
    DeviceResponse,
    PushSendRequest,
    PushSendResponse,
)
from ..services.device_registry import DeviceRegistry, cleanup_inactive_devices
from ..services.fcm_client import PushErrorCode, get_push_client
from ..utils.audit_logger import get_request_id
from ..utils.dependencies import Caller, get_caller, get_current_host, require_service
from ..utils.metrics import record_push
from ..utils.rate_limiter import get_rate_limit, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/push", tags=["Push"])


# ==================
# Dispatch
# ==================

@router.post("/send", response_model=PushSendResponse)
@limiter.limit(get_rate_limit("push_send"))
async def send_push(
    request: Request,
    push_request: PushSendRequest,
    db: Session = Depends(get_db),
    caller: Caller = Depends(get_caller),
    push_client=Depends(get_push_client)
):
    """
    Send one push notification.

    Body: {to | fcmToken, notification: {title, body}, data}
    """
    request_id = get_request_id(request)
    token = push_request.recipient

    if not token:
        return JSONResponse(
            status_code=400,
            content=PushSendResponse(
                success=False,
                error="FCM token is required but not provided",
                error_code=PushErrorCode.MISSING_RECIPIENT
            ).model_dump()
        )

    result = await run_in_threadpool(
        push_client.send,
        token,
        push_request.notification.title,
        push_request.notification.body,
        push_request.data
    )
    record_push("direct", result.success, result.token_invalid)

    if result.token_invalid:
        # Stop fanning out to a token FCM no longer accepts
        deactivated = DeviceRegistry(db).deactivate_token(token)
        if deactivated:
            logger.info(f"[{request_id}] Deactivated {deactivated} registration(s) with an unregistered token")

    if result.success:
        return PushSendResponse(success=True, messageId=result.message_id)

    logger.warning(f"[{request_id}] Push send failed ({result.error_code}): {result.error}")
    return PushSendResponse(success=False, error=result.error, error_code=result.error_code)


# ==================
# Devices
# ==================

@router.post("/devices", response_model=DeviceResponse)
@limiter.limit(get_rate_limit("device_register"))
async def register_device(
    request: Request,
    device_data: DeviceRegisterRequest,
    db: Session = Depends(get_db),
    host_id: str = Depends(get_current_host)
):
    """Register or refresh this browser/app installation for push"""
    return DeviceRegistry(db).register_device(
        user_id=host_id,
        device_id=device_data.device_id,
        token=device_data.token,
        platform=device_data.platform,
        device_name=device_data.device_name
    )


@router.get("/devices", response_model=List[DeviceResponse])
async def list_devices(
    db: Session = Depends(get_db),
    host_id: str = Depends(get_current_host)
):
    return DeviceRegistry(db).list_devices(host_id)


@router.post("/devices/cleanup", response_model=DeviceCleanupResponse)
async def cleanup_devices(
    db: Session = Depends(get_db),
    _service: Caller = Depends(require_service)
):
    days = settings.device_inactive_days
    deleted = cleanup_inactive_devices(db, days)
    return DeviceCleanupResponse(deleted=deleted, inactive_days=days)


@router.post("/devices/{device_id}/heartbeat")
async def device_heartbeat(
    device_id: str,
    db: Session = Depends(get_db),
    host_id: str = Depends(get_current_host)
):
    if not DeviceRegistry(db).touch_device(host_id, device_id):
        raise HTTPException(status_code=404, detail="Device not found")
    return {"success": True}


@router.delete("/devices/{device_id}")
async def remove_device(
    device_id: str,
    db: Session = Depends(get_db),
    host_id: str = Depends(get_current_host)
):
    if not DeviceRegistry(db).remove_device(host_id, device_id):
        raise HTTPException(status_code=404, detail="Device not found")
    return {"success": True, "message": "Device removed"}
