"""
Conversation Model

One guest <-> host thread. A conversation may be created from a booking
event (booking id known, thread uid null) or from a guest message (thread
uid known, booking id possibly filled in later). Both partial states
converge on the same row once both identifiers are known.
"""

import uuid
import enum
from datetime import datetime
from sqlalchemy import (
    Column, String, Integer, Float, Date, DateTime, Text, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from ..database import Base


class ConversationStatus(str, enum.Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class ResolutionMethod(str, enum.Enum):
    """How the conversation was matched or created by the resolver"""
    BOOKING_ID = "booking_id"
    THREAD_UID = "thread_uid"
    GUEST_NAME = "guest_name"  # lower-confidence merge path
    BOOKING_EVENT = "booking_event"
    CREATED = "created"


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    host_id = Column(String(64), nullable=False, index=True)

    # Guest
    guest_name = Column(String(255), nullable=True)
    guest_phone = Column(String(50), nullable=True)
    guest_email = Column(String(255), nullable=True)
    guest_count = Column(Integer, nullable=True)

    # Stay
    check_in_date = Column(Date, nullable=True)
    check_out_date = Column(Date, nullable=True)
    nights = Column(Integer, nullable=True)

    # Lodgify identifiers
    lodgify_booking_id = Column(String(64), nullable=True)
    lodgify_thread_uid = Column(String(255), nullable=True)
    lodgify_property_id = Column(String(64), nullable=True)
    property_name = Column(String(255), nullable=True)

    # Booking details
    booking_source = Column(String(100), nullable=True)
    booking_status = Column(String(50), nullable=True)
    total_amount = Column(Float, nullable=True)
    currency = Column(String(10), nullable=True)

    status = Column(String(20), default=ConversationStatus.ACTIVE.value, nullable=False)
    resolution_method = Column(String(20), nullable=True)

    # Rollups, updated atomically by the message ingestor
    unread_count = Column(Integer, default=0, nullable=False)
    last_message = Column(Text, nullable=True)
    last_message_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        # At most one conversation per (host, Lodgify booking)
        UniqueConstraint("host_id", "lodgify_booking_id", name="uq_conversation_host_booking"),
        Index("ix_conversation_host_thread", "host_id", "lodgify_thread_uid"),
        Index("ix_conversation_host_guest", "host_id", "guest_name", "created_at"),
    )

    def __repr__(self):
        return (
            f"<Conversation {self.id} host={self.host_id} "
            f"booking={self.lodgify_booking_id} thread={self.lodgify_thread_uid}>"
        )
