"""
Message Model

Inbound (guest -> host) and outbound (host -> guest) chat messages.
lodgify_message_id is the dedup key for inbound deliveries.
"""

import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship

from ..database import Base


class MessageDirection(str, enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    conversation_id = Column(
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False
    )

    content = Column(Text, nullable=False)
    type = Column(String(20), default="text", nullable=False)
    direction = Column(String(20), nullable=False)
    status = Column(String(20), default=MessageStatus.DELIVERED.value, nullable=False)

    lodgify_message_id = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    conversation = relationship("Conversation", back_populates="messages")

    __table_args__ = (
        # NULLs are distinct, so outbound/system messages are unaffected
        UniqueConstraint("conversation_id", "lodgify_message_id", name="uq_message_conversation_lodgify"),
        Index("ix_message_conversation_created", "conversation_id", "created_at"),
    )

    def __repr__(self):
        return f"<Message {self.id} {self.direction} lodgify={self.lodgify_message_id}>"
