"""
Push Subscription (Device Registration) Model

One FCM endpoint per (host, physical device). Upserted on every
token refresh, marked inactive when FCM reports the token invalid,
purged by the inactivity sweep.
"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, Text, Index, UniqueConstraint

from ..database import Base


class PushSubscription(Base):
    __tablename__ = "push_subscriptions"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(64), nullable=False)

    # Client-generated device fingerprint
    device_id = Column(String(255), nullable=False)
    device_name = Column(String(255), nullable=True)
    platform = Column(String(20), default="web", nullable=False)  # web, ios, android

    token = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    last_active = Column(DateTime, default=datetime.utcnow)
    last_used_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "device_id", name="uq_push_subscription_user_device"),
        Index("ix_push_subscription_last_active", "last_active"),
    )

    def __repr__(self):
        return f"<PushSubscription {self.user_id}/{self.device_id} active={self.is_active}>"
