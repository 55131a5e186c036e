"""
Lodgify Webhook Provisioning

Configuration save flow:
1. Unsubscribe webhooks left from a previous save, then persist the
   host's API key (webhook_configured = False)
2. Subscribe booking_change and guest_message_received in parallel
3. Store each subscription's id + signing secret independently
4. webhook_configured = both subscriptions succeeded

Step 2 runs under a hard timeout. If Lodgify is slow the configuration is
still saved and provisioning is reported as retryable; a subscription that
completes after the timeout is unsubscribed again rather than left orphaned.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from functools import partial
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.tenant import LodgifyConfig, WebhookEventKind
from .lodgify_client import LodgifyClient, LodgifyResponse
from .tenant_secrets import TenantSecretStore

logger = logging.getLogger(__name__)

WEBHOOK_PATHS = {
    WebhookEventKind.BOOKING: "booking-webhook",
    WebhookEventKind.MESSAGE: "message-webhook",
}


@dataclass
class SubscriptionResult:
    event: str
    success: bool
    webhook_id: Optional[str] = None
    secret: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ProvisioningResult:
    success: bool
    webhook_configured: bool = False
    config_saved: bool = True
    timed_out: bool = False
    message: str = ""
    subscriptions: List[SubscriptionResult] = field(default_factory=list)


def build_target_url(host_id: str, event_kind: WebhookEventKind, base_url: Optional[str] = None) -> str:
    base = (base_url or settings.public_base_url).rstrip("/")
    return f"{base}/api/webhooks/lodgify/{WEBHOOK_PATHS[event_kind]}?host_id={host_id}"


class WebhookProvisioningService:
    def __init__(
        self,
        db: Session,
        client_factory: Callable[[str], LodgifyClient] = LodgifyClient,
        timeout: Optional[float] = None
    ):
        self.db = db
        self.secrets = TenantSecretStore(db)
        self.client_factory = client_factory
        self.timeout = timeout if timeout is not None else settings.lodgify_provisioning_timeout_seconds

    def status(self, host_id: str) -> Optional[LodgifyConfig]:
        return self.secrets.get_config(host_id)

    # ==================
    # Subscribe
    # ==================

    def _subscribe(self, client: LodgifyClient, host_id: str, event_kind: WebhookEventKind) -> SubscriptionResult:
        response: LodgifyResponse = client.subscribe_webhook(
            event_kind.value,
            build_target_url(host_id, event_kind)
        )
        if not response.success:
            return SubscriptionResult(event=event_kind.value, success=False, error=response.error)

        data = response.data or {}
        webhook_id = data.get("id")
        secret = data.get("secret")
        if not webhook_id or not secret:
            return SubscriptionResult(
                event=event_kind.value,
                success=False,
                error="Lodgify response is missing the webhook id or secret"
            )
        return SubscriptionResult(
            event=event_kind.value,
            success=True,
            webhook_id=str(webhook_id),
            secret=str(secret)
        )

    def provision(self, host_id: str, api_key: str) -> ProvisioningResult:
        self._retire_previous(host_id)
        self.secrets.save_api_key(host_id, api_key)
        logger.info(f"Saved Lodgify config for host {host_id}, subscribing webhooks")

        client = self.client_factory(api_key)
        kinds = list(WEBHOOK_PATHS.keys())
        results: Dict[WebhookEventKind, SubscriptionResult] = {}

        executor = ThreadPoolExecutor(max_workers=len(kinds), thread_name_prefix="lodgify-subscribe")
        try:
            futures = {executor.submit(self._subscribe, client, host_id, kind): kind for kind in kinds}
            done, not_done = wait(futures, timeout=self.timeout)

            for future in done:
                kind = futures[future]
                error = future.exception()
                if error is not None:
                    logger.error(f"Subscribing {kind.value} for host {host_id} raised: {error}")
                    results[kind] = SubscriptionResult(event=kind.value, success=False, error=str(error))
                else:
                    results[kind] = future.result()

            for future in not_done:
                kind = futures[future]
                results[kind] = SubscriptionResult(
                    event=kind.value,
                    success=False,
                    error=f"Timed out after {self.timeout}s"
                )
                future.add_done_callback(partial(self._discard_late_subscription, client, host_id, kind))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        timed_out = bool(not_done)

        for kind, result in results.items():
            if result.success:
                self.secrets.store_subscription(host_id, kind, result.webhook_id, result.secret)
            else:
                logger.warning(f"Webhook {kind.value} not provisioned for host {host_id}: {result.error}")

        configured = all(r.success for r in results.values())
        config = self.secrets.get_config(host_id)
        config.webhook_configured = configured
        self.db.commit()

        if configured:
            message = "Webhooks configured"
        elif timed_out:
            message = "Configuration saved, webhook provisioning timed out and can be retried"
        else:
            message = "Configuration saved, some webhooks could not be provisioned"

        logger.info(f"Provisioning for host {host_id}: configured={configured} timed_out={timed_out}")
        return ProvisioningResult(
            success=configured,
            webhook_configured=configured,
            timed_out=timed_out,
            message=message,
            subscriptions=[results[k] for k in kinds]
        )

    # ==================
    # Unsubscribe
    # ==================

    def _unsubscribe_stored(
        self,
        client: LodgifyClient,
        host_id: str,
        config: LodgifyConfig
    ) -> List[SubscriptionResult]:
        stored = [
            (WebhookEventKind.BOOKING, config.booking_webhook_id),
            (WebhookEventKind.MESSAGE, config.message_webhook_id),
        ]

        outcomes = []
        for kind, webhook_id in stored:
            if not webhook_id:
                continue
            # Each kind independently: one failure does not block the other
            try:
                response = client.unsubscribe_webhook(webhook_id)
            except Exception as e:
                logger.error(f"Unsubscribing {kind.value} for host {host_id} raised: {e}")
                outcomes.append(SubscriptionResult(event=kind.value, success=False, webhook_id=webhook_id, error=str(e)))
                continue
            outcomes.append(SubscriptionResult(
                event=kind.value,
                success=response.success,
                webhook_id=webhook_id,
                error=response.error
            ))
        return outcomes

    def _retire_previous(self, host_id: str) -> None:
        """Drop the subscriptions of an earlier save before subscribing again."""
        config = self.secrets.get_config(host_id)
        if config is None or not (config.booking_webhook_id or config.message_webhook_id):
            return

        # Old subscriptions belong to the account of the previously saved key
        outcomes = self._unsubscribe_stored(self.client_factory(config.api_key), host_id, config)
        self.secrets.clear_subscriptions(host_id)
        self.db.commit()

        failed = [o.event for o in outcomes if not o.success]
        if failed:
            logger.warning(f"Previous webhooks for host {host_id} not removed upstream: {', '.join(failed)}")
        else:
            logger.info(f"Removed {len(outcomes)} previous webhook(s) for host {host_id}")

    def _discard_late_subscription(
        self,
        client: LodgifyClient,
        host_id: str,
        kind: WebhookEventKind,
        future: Future
    ) -> None:
        """A subscribe that finished after the timeout was never stored, so remove it upstream."""
        if future.cancelled() or future.exception() is not None:
            return
        result = future.result()
        if not result.success:
            return

        logger.info(f"Late {kind.value} subscription {result.webhook_id} for host {host_id}, unsubscribing")
        try:
            response = client.unsubscribe_webhook(result.webhook_id)
        except Exception as e:
            logger.error(f"Could not remove late {kind.value} subscription for host {host_id}: {e}")
            return
        if not response.success:
            logger.error(f"Could not remove late {kind.value} subscription for host {host_id}: {response.error}")

    def unprovision(self, host_id: str) -> ProvisioningResult:
        config = self.secrets.get_config(host_id)
        if config is None:
            return ProvisioningResult(success=False, config_saved=False, message="No Lodgify configuration")

        outcomes = self._unsubscribe_stored(self.client_factory(config.api_key), host_id, config)

        self.secrets.clear_subscriptions(host_id)
        self.db.commit()

        success = all(o.success for o in outcomes)
        logger.info(f"Unsubscribed webhooks for host {host_id}: {len(outcomes)} attempted, success={success}")
        return ProvisioningResult(
            success=success,
            webhook_configured=False,
            message="Webhooks removed" if success else "Secrets cleared, some Lodgify unsubscribes failed",
            subscriptions=outcomes
        )
