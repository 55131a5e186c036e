"""
Conversation Analysis Model - emergency classification results
"""

import uuid
import enum
from datetime import datetime
from sqlalchemy import Column, String, Boolean, Float, DateTime, Text, ForeignKey, Index

from ..database import Base


class EmergencyType(str, enum.Enum):
    CRITICAL_EMERGENCY = "critical_emergency"
    AI_UNCERTAIN = "ai_uncertain"
    CUSTOMER_DISSATISFIED = "customer_dissatisfied"
    ACCOMMODATION_ISSUE = "accommodation_issue"


class ConversationAnalysis(Base):
    __tablename__ = "conversation_analyses"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    conversation_id = Column(
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False
    )
    message_id = Column(String(36), nullable=True)
    message_content = Column(Text, nullable=True)

    is_emergency = Column(Boolean, default=False, nullable=False)
    emergency_type = Column(String(30), nullable=True)
    confidence_score = Column(Float, default=0.0)
    reasoning = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_conversation_analysis_conversation", "conversation_id", "created_at"),
    )
