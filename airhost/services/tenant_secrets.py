"""
Tenant Secret Store

Per-host Lodgify API key and per-event-kind webhook signing secrets,
read from the lodgify_configs table. Secrets are tenant data, not process
configuration.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ..models.tenant import LodgifyConfig, WebhookEventKind
from ..utils.db_helpers import upsert

logger = logging.getLogger(__name__)


class TenantSecretStore:
    def __init__(self, db: Session):
        self.db = db

    def get_config(self, host_id: str) -> Optional[LodgifyConfig]:
        if not host_id:
            return None
        return self.db.query(LodgifyConfig).filter(LodgifyConfig.host_id == host_id).first()

    def get_api_key(self, host_id: str) -> Optional[str]:
        config = self.get_config(host_id)
        return config.api_key if config and config.api_key else None

    def get_secret(self, host_id: str, event_kind: WebhookEventKind) -> Optional[str]:
        """Signing secret for (host, event kind), or None if not provisioned"""
        config = self.get_config(host_id)
        if config is None:
            return None
        return config.secret_for(event_kind) or None

    def save_api_key(self, host_id: str, api_key: str) -> LodgifyConfig:
        """
        Create or update the host's configuration.

        Webhooks are flagged unconfigured until provisioning reports back.
        """
        now = datetime.utcnow()
        upsert(
            self.db,
            LodgifyConfig,
            {
                "host_id": host_id,
                "api_key": api_key,
                "webhook_configured": False,
                "created_at": now,
                "updated_at": now,
            },
            conflict_columns=["host_id"],
            update_columns=["api_key", "webhook_configured", "updated_at"],
        )
        self.db.commit()
        # The upsert bypassed the identity map
        self.db.expire_all()
        return self.get_config(host_id)

    def store_subscription(
        self,
        host_id: str,
        event_kind: WebhookEventKind,
        webhook_id: Optional[str],
        secret: Optional[str]
    ) -> None:
        config = self.get_config(host_id)
        if config is None:
            logger.warning(f"Cannot store {event_kind.value} subscription: no config for host {host_id}")
            return

        if event_kind == WebhookEventKind.BOOKING:
            config.booking_webhook_id = webhook_id
            config.booking_webhook_secret = secret
        else:
            config.message_webhook_id = webhook_id
            config.message_webhook_secret = secret

    def clear_subscriptions(self, host_id: str) -> None:
        config = self.get_config(host_id)
        if config is None:
            return
        config.booking_webhook_id = None
        config.booking_webhook_secret = None
        config.message_webhook_id = None
        config.message_webhook_secret = None
        config.webhook_configured = False
