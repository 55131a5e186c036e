"""
Lodgify Configuration Router

Host-facing endpoints:
- save the Lodgify API key and provision both webhooks
- read configuration status (secrets are never returned)
- remove the webhook subscriptions
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ..database import get_db
from ..schemas.lodgify import (
    LodgifyConfigSave,
    LodgifyConfigStatus,
    ProvisioningResponse,
    SubscriptionOutcome,
    UnsubscribeResponse,
)
from ..services.lodgify_client import LodgifyClient
from ..services.webhook_provisioning import WebhookProvisioningService
from ..utils.audit_logger import get_request_id
from ..utils.dependencies import get_current_host
from ..utils.rate_limiter import get_rate_limit, limiter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/lodgify", tags=["Lodgify"])


def get_lodgify_client_factory():
    """Builds a Lodgify client from an API key"""
    return LodgifyClient


def _outcomes(subscriptions) -> list:
    return [
        SubscriptionOutcome(
            event=s.event,
            success=s.success,
            webhook_id=s.webhook_id,
            error=s.error
        )
        for s in subscriptions
    ]


@router.post("/config", response_model=ProvisioningResponse)
@limiter.limit(get_rate_limit("config_save"))
async def save_lodgify_config(
    request: Request,
    config_data: LodgifyConfigSave,
    db: Session = Depends(get_db),
    host_id: str = Depends(get_current_host),
    client_factory=Depends(get_lodgify_client_factory)
):
    """
    Save the API key, then subscribe booking_change and guest_message_received.

    The key is stored even if Lodgify does not answer in time; the response
    says whether provisioning can be retried.
    """
    request_id = get_request_id(request)
    logger.info(f"[{request_id}] Saving Lodgify config for host {host_id}")

    service = WebhookProvisioningService(db, client_factory=client_factory)
    result = await run_in_threadpool(service.provision, host_id, config_data.api_key.strip())

    return ProvisioningResponse(
        success=result.success,
        config_saved=result.config_saved,
        webhook_configured=result.webhook_configured,
        timed_out=result.timed_out,
        retryable=not result.webhook_configured,
        message=result.message,
        subscriptions=_outcomes(result.subscriptions)
    )


@router.get("/config", response_model=LodgifyConfigStatus)
async def get_lodgify_config(
    db: Session = Depends(get_db),
    host_id: str = Depends(get_current_host)
):
    config = WebhookProvisioningService(db).status(host_id)
    if config is None:
        raise HTTPException(status_code=404, detail="Lodgify is not configured")

    return LodgifyConfigStatus(
        host_id=config.host_id,
        webhook_configured=bool(config.webhook_configured),
        booking_webhook_id=config.booking_webhook_id,
        message_webhook_id=config.message_webhook_id,
        has_booking_secret=bool(config.booking_webhook_secret),
        has_message_secret=bool(config.message_webhook_secret),
        updated_at=config.updated_at
    )


@router.delete("/config/webhooks", response_model=UnsubscribeResponse)
async def remove_lodgify_webhooks(
    request: Request,
    db: Session = Depends(get_db),
    host_id: str = Depends(get_current_host),
    client_factory=Depends(get_lodgify_client_factory)
):
    request_id = get_request_id(request)
    service = WebhookProvisioningService(db, client_factory=client_factory)
    result = await run_in_threadpool(service.unprovision, host_id)

    if not result.config_saved:
        raise HTTPException(status_code=404, detail="Lodgify is not configured")

    logger.info(f"[{request_id}] Webhooks removed for host {host_id}: success={result.success}")
    return UnsubscribeResponse(
        success=result.success,
        message=result.message,
        subscriptions=_outcomes(result.subscriptions)
    )
