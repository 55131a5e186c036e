"""
Notification Queue Model

Durable queue of push notification jobs that are not sent inline by a
webhook. Swept periodically; retried until max_attempts.
"""

import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, Index

from ..database import Base


class NotificationJobStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationJobType(str, enum.Enum):
    NEW_MESSAGE = "new_message"
    EMERGENCY = "emergency"
    SYSTEM = "system"


class NotificationJob(Base):
    __tablename__ = "notification_queue"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    recipient_id = Column(String(64), nullable=False)

    conversation_id = Column(String(36), nullable=True)
    message_id = Column(String(36), nullable=True)

    type = Column(String(30), default=NotificationJobType.NEW_MESSAGE.value, nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    data = Column(JSON, nullable=True)

    status = Column(String(20), default=NotificationJobStatus.PENDING.value, nullable=False)
    attempts = Column(Integer, default=0, nullable=False)
    max_attempts = Column(Integer, default=3, nullable=False)

    scheduled_at = Column(DateTime, nullable=True)  # NULL = send as soon as possible
    sent_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_notification_queue_status", "status", "scheduled_at", "created_at"),
        Index("ix_notification_queue_recipient", "recipient_id"),
    )

    def __repr__(self):
        return f"<NotificationJob {self.id} {self.status} attempts={self.attempts}/{self.max_attempts}>"
