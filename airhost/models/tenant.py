"""
Lodgify Tenant Configuration Model

One row per host. Holds the Lodgify API key and the per-event-kind
webhook subscription ids and signing secrets. Secrets are written by
webhook provisioning and cleared on unsubscribe.
"""

import enum
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, Text

from ..database import Base


class WebhookEventKind(str, enum.Enum):
    """Lodgify webhook event kinds we subscribe to"""
    BOOKING = "booking_change"
    MESSAGE = "guest_message_received"


class LodgifyConfig(Base):
    __tablename__ = "lodgify_configs"

    host_id = Column(String(64), primary_key=True)
    api_key = Column(Text, nullable=False)

    # Signing secrets returned by the Lodgify subscribe endpoint
    booking_webhook_secret = Column(Text, nullable=True)
    message_webhook_secret = Column(Text, nullable=True)

    # Subscription ids, needed to unsubscribe
    booking_webhook_id = Column(String(255), nullable=True)
    message_webhook_id = Column(String(255), nullable=True)

    webhook_configured = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def secret_for(self, event_kind: WebhookEventKind):
        if event_kind == WebhookEventKind.BOOKING:
            return self.booking_webhook_secret
        if event_kind == WebhookEventKind.MESSAGE:
            return self.message_webhook_secret
        return None

    def __repr__(self):
        return f"<LodgifyConfig host={self.host_id} configured={self.webhook_configured}>"
