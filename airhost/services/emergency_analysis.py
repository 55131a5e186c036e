"""
Emergency Analysis

Classifies inbound guest messages so hosts are alerted about urgent
situations. Runs as a FastAPI background task after the webhook response
is sent, with its own database session; any failure is logged and stays
inside the task.

Categories:
- critical_emergency: water leak, fire, no heating, electrical, medical...
- ai_uncertain: a previous AI reply was flagged uncertain (U+200B marker)
- customer_dissatisfied: angry or unhappy guest
- accommodation_issue: non-critical problem with the property
"""

import json
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from openai import OpenAI, OpenAIError
from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal
from ..models.conversation_analysis import ConversationAnalysis, EmergencyType
from ..models.notification_queue import NotificationJobType
from ..utils.metrics import record_emergency_analysis
from .notification_queue import enqueue_notification

logger = logging.getLogger(__name__)

ZERO_WIDTH_SPACE = "\u200b"

EMERGENCY_LABELS = {
    EmergencyType.CRITICAL_EMERGENCY.value: "Critical emergency",
    EmergencyType.AI_UNCERTAIN.value: "AI reply needs review",
    EmergencyType.CUSTOMER_DISSATISFIED.value: "Unhappy guest",
    EmergencyType.ACCOMMODATION_ISSUE.value: "Accommodation issue",
}

SYSTEM_PROMPT = (
    "You are an expert at triaging guest messages for short-term rental hosts. "
    "Detect problems that need the host's immediate attention."
)

USER_PROMPT = """Analyse this guest message and decide whether it is an emergency or a problem.

Guest message: "{content}"

Categories:
1. "critical_emergency": water leak, fire, heating failure, electrical problem, medical emergency, etc.
2. "customer_dissatisfied": unhappy, angry or frustrated guest
3. "accommodation_issue": non-critical problem with the property (cleanliness, broken equipment, noisy neighbours, etc.)

Reply ONLY with strict JSON:
{{"isEmergency": boolean, "emergencyType": "critical_emergency" | "customer_dissatisfied" | "accommodation_issue" | null, "confidence": number between 0 and 1, "reasoning": "one or two sentences"}}

emergencyType is null when isEmergency is false."""


@dataclass
class EmergencyAssessment:
    is_emergency: bool
    emergency_type: Optional[str]
    confidence: float
    reasoning: str


NOT_AN_EMERGENCY = EmergencyAssessment(False, None, 0.0, "Automatic analysis failed")


def detect_ai_uncertainty(content: str) -> bool:
    return ZERO_WIDTH_SPACE in (content or "")


def parse_assessment(raw: str) -> EmergencyAssessment:
    """Validate the classifier's JSON reply. Raises ValueError on bad shape."""
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("Classifier reply is not an object")

    is_emergency = data.get("isEmergency")
    confidence = data.get("confidence")
    reasoning = data.get("reasoning")
    if not isinstance(is_emergency, bool) or not isinstance(confidence, (int, float)) or not isinstance(reasoning, str):
        raise ValueError("Classifier reply has an invalid format")

    emergency_type = data.get("emergencyType") if is_emergency else None
    valid_types = {t.value for t in EmergencyType}
    if emergency_type is not None and emergency_type not in valid_types:
        raise ValueError(f"Unknown emergency type: {emergency_type}")

    return EmergencyAssessment(
        is_emergency=is_emergency,
        emergency_type=emergency_type,
        confidence=max(0.0, min(1.0, float(confidence))),
        reasoning=reasoning,
    )


class EmergencyClassifier:
    """OpenAI-compatible chat completion classifier. classify() never raises."""

    def __init__(self, client: Optional[OpenAI] = None):
        self._client = client

    @property
    def client(self) -> Optional[OpenAI]:
        if self._client is None and settings.openai_api_key:
            self._client = OpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url,
                timeout=settings.openai_timeout_seconds,
            )
        return self._client

    def classify(self, content: str) -> EmergencyAssessment:
        if detect_ai_uncertainty(content):
            return EmergencyAssessment(
                is_emergency=True,
                emergency_type=EmergencyType.AI_UNCERTAIN.value,
                confidence=1.0,
                reasoning="Uncertain AI reply detected via invisible marker",
            )

        if self.client is None:
            return EmergencyAssessment(False, None, 0.0, "AI classifier not configured")

        try:
            completion = self.client.chat.completions.create(
                model=settings.openai_model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": USER_PROMPT.format(content=content)},
                ],
                temperature=0.1,
                max_tokens=300,
                response_format={"type": "json_object"},
            )
            return parse_assessment(completion.choices[0].message.content or "")
        except (OpenAIError, ValueError, IndexError) as e:
            logger.warning(f"Emergency classification failed, treating as non-emergency: {e}")
            return NOT_AN_EMERGENCY


_classifier: Optional[EmergencyClassifier] = None


def get_emergency_classifier() -> EmergencyClassifier:
    global _classifier
    if _classifier is None:
        _classifier = EmergencyClassifier()
    return _classifier


def analyze_message(
    db: Session,
    host_id: str,
    conversation_id: str,
    message_id: Optional[str],
    content: str,
    classifier: EmergencyClassifier
) -> ConversationAnalysis:
    """Classify, persist the analysis and queue a host alert for emergencies. Caller commits."""
    assessment = classifier.classify(content)

    analysis = ConversationAnalysis(
        conversation_id=conversation_id,
        message_id=message_id,
        message_content=content,
        is_emergency=assessment.is_emergency,
        emergency_type=assessment.emergency_type,
        confidence_score=assessment.confidence,
        reasoning=assessment.reasoning,
    )
    db.add(analysis)
    db.flush()

    record_emergency_analysis(assessment.emergency_type or "none")

    if assessment.is_emergency:
        label = EMERGENCY_LABELS.get(assessment.emergency_type, "Needs attention")
        enqueue_notification(
            db,
            recipient_id=host_id,
            title=f"⚠️ {label}",
            body=content[:200],
            type=NotificationJobType.EMERGENCY.value,
            conversation_id=conversation_id,
            message_id=message_id,
            data={
                "url": f"{settings.app_url.rstrip('/')}/chat?conversation={conversation_id}",
                "emergencyType": assessment.emergency_type,
                "analysisId": analysis.id,
            },
        )
        logger.warning(
            f"Emergency detected in conversation {conversation_id}: "
            f"{assessment.emergency_type} ({assessment.confidence:.2f})"
        )

    return analysis


def run_emergency_analysis(
    host_id: str,
    conversation_id: str,
    message_id: Optional[str],
    content: str,
    classifier: Optional[EmergencyClassifier] = None,
    session_factory: Callable[[], Session] = SessionLocal
) -> None:
    """Background task entry point. Never raises."""
    db = None
    try:
        db = session_factory()
        analyze_message(
            db,
            host_id,
            conversation_id,
            message_id,
            content,
            classifier or get_emergency_classifier()
        )
        db.commit()
    except Exception:
        if db is not None:
            db.rollback()
        logger.exception(f"Emergency analysis failed for conversation {conversation_id}")
        record_emergency_analysis("error")
    finally:
        if db is not None:
            db.close()
