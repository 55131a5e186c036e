"""
Lodgify Webhook Router

Handles the two inbound Lodgify webhooks for a host:

booking_change:
    authenticate -> find conversation by booking id -> create it with the
    booking details and a one-time "reservation confirmed" message

guest_message_received:
    authenticate -> resolve conversation -> ingest message once ->
    push to every registered device of the host

Authentication happens before any parsing or lookup:
- missing host_id -> 400
- missing ms-signature header -> 400
- signature mismatch / no secret for the host -> 401 (audit log only)
- no Lodgify API key for the host -> 400
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.tenant import WebhookEventKind
from ..schemas.lodgify import BookingChangeEvent, GuestMessageEvent, parse_event_list
from ..utils.audit_logger import log_webhook_auth_event
from ..utils.metrics import record_webhook_event
from .conversation_resolver import ConversationResolver
from .message_ingestor import MessageIngestor
from .notification_fanout import FanoutResult, NotificationFanout
from .signature import SignatureVerifier
from .tenant_secrets import TenantSecretStore

logger = logging.getLogger(__name__)


class WebhookError(Exception):
    """Request-level rejection, mapped to an HTTP status by the API layer."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class WebhookAuthError(WebhookError):
    """Missing (400) or invalid (401) signature."""


class TenantNotFoundError(WebhookError):
    def __init__(self, message: str):
        super().__init__(400, message)


class InvalidPayloadError(WebhookError):
    def __init__(self, message: str):
        super().__init__(400, message)


@dataclass
class WebhookResult:
    success: bool
    action: str  # created, exists, ingested, duplicate
    message: str = ""
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    content: Optional[str] = None
    created: bool = False
    resolution_method: Optional[str] = None
    conflicts: List[str] = field(default_factory=list)
    fanout: Optional[FanoutResult] = None


def booking_confirmation_text(event: BookingChangeEvent) -> str:
    booking = event.booking
    arrival = (booking.date_arrival or "").split("T")[0]
    departure = (booking.date_departure or "").split("T")[0]
    guest_name = event.guest.name if event.guest and event.guest.name else "unknown"
    return (
        f"New reservation confirmed for {booking.property_name or 'your property'} "
        f"from {arrival} to {departure}. Guest: {guest_name}"
    )


class LodgifyWebhookRouter:
    def __init__(self, db: Session, push_client, request_id: str = "", client_ip: Optional[str] = None):
        self.db = db
        self.push_client = push_client
        self.request_id = request_id
        self.client_ip = client_ip
        self.secrets = TenantSecretStore(db)
        self.verifier = SignatureVerifier(self.secrets)

    # ==================
    # Authentication + parsing
    # ==================

    def authenticate(
        self,
        raw_body: bytes,
        signature: Optional[str],
        host_id: Optional[str],
        event_kind: WebhookEventKind
    ) -> Dict[str, Any]:
        """Verify the delivery and return the first event of the payload."""
        if not host_id:
            record_webhook_event(event_kind.value, "rejected")
            raise InvalidPayloadError("Missing host_id parameter")

        if not signature:
            log_webhook_auth_event(
                event_kind.value, host_id, success=False, reason="missing signature header",
                ip_address=self.client_ip, request_id=self.request_id
            )
            record_webhook_event(event_kind.value, "rejected")
            raise WebhookAuthError(400, "Missing signature header")

        if not self.verifier.verify(raw_body, signature, host_id, event_kind):
            log_webhook_auth_event(
                event_kind.value, host_id, success=False, reason="invalid signature",
                ip_address=self.client_ip, request_id=self.request_id
            )
            record_webhook_event(event_kind.value, "unauthorized")
            raise WebhookAuthError(401, "Unauthorized - Invalid signature")

        if not self.secrets.get_api_key(host_id):
            record_webhook_event(event_kind.value, "rejected")
            raise TenantNotFoundError("Client identification required")

        try:
            parsed = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError):
            record_webhook_event(event_kind.value, "rejected")
            raise InvalidPayloadError("Invalid JSON payload")

        events = parse_event_list(parsed)
        if not events:
            record_webhook_event(event_kind.value, "rejected")
            raise InvalidPayloadError("No events to process")

        if len(events) > 1:
            logger.info(f"[{self.request_id}] {len(events)} events in one delivery, processing the first")
        return events[0]

    # ==================
    # booking_change
    # ==================

    def handle_booking(self, raw_body: bytes, signature: Optional[str], host_id: Optional[str]) -> WebhookResult:
        raw_event = self.authenticate(raw_body, signature, host_id, WebhookEventKind.BOOKING)

        try:
            event = BookingChangeEvent.model_validate(raw_event)
        except ValidationError as e:
            record_webhook_event(WebhookEventKind.BOOKING.value, "rejected")
            raise InvalidPayloadError(f"Invalid booking event: {e.errors()[0].get('msg', 'validation error')}")

        logger.info(
            f"[{self.request_id}] Booking {event.booking.id} ({event.booking.status}) for host {host_id}"
        )

        resolved = ConversationResolver(self.db).resolve_booking(host_id, event)
        conversation = resolved.conversation

        if not resolved.created:
            self.db.commit()
            record_webhook_event(WebhookEventKind.BOOKING.value, "exists")
            return WebhookResult(
                success=True,
                action="exists",
                message="Conversation already exists",
                conversation_id=conversation.id,
                resolution_method=resolved.method,
            )

        MessageIngestor(self.db).add_booking_confirmation(conversation, booking_confirmation_text(event))
        self.db.commit()

        record_webhook_event(WebhookEventKind.BOOKING.value, "created")
        return WebhookResult(
            success=True,
            action="created",
            message="Booking processed successfully",
            conversation_id=conversation.id,
            created=True,
            resolution_method=resolved.method,
        )

    # ==================
    # guest_message_received
    # ==================

    def handle_message(self, raw_body: bytes, signature: Optional[str], host_id: Optional[str]) -> WebhookResult:
        raw_event = self.authenticate(raw_body, signature, host_id, WebhookEventKind.MESSAGE)

        try:
            event = GuestMessageEvent.model_validate(raw_event)
        except ValidationError as e:
            record_webhook_event(WebhookEventKind.MESSAGE.value, "rejected")
            raise InvalidPayloadError(f"Invalid message event: {e.errors()[0].get('msg', 'validation error')}")

        if not (event.thread_uid or event.booking_id or event.guest_name):
            record_webhook_event(WebhookEventKind.MESSAGE.value, "rejected")
            raise InvalidPayloadError("Event has no thread, booking or guest identifier")

        logger.info(
            f"[{self.request_id}] Guest message {event.message_id} for host {host_id} "
            f"(inbox={event.inbox_uid}, thread={event.thread_uid})"
        )

        resolved = ConversationResolver(self.db).resolve(host_id, event)
        conversation = resolved.conversation

        ingested = MessageIngestor(self.db).ingest(conversation.id, event)
        self.db.commit()

        if ingested.was_duplicate:
            record_webhook_event(WebhookEventKind.MESSAGE.value, "duplicate")
            return WebhookResult(
                success=True,
                action="duplicate",
                message=f"Message {event.message_id} already exists",
                conversation_id=conversation.id,
                message_id=ingested.message.id if ingested.message else None,
                resolution_method=resolved.method,
                conflicts=resolved.conflicts,
            )

        fanout = self._notify(host_id, conversation.id, event)

        record_webhook_event(WebhookEventKind.MESSAGE.value, "ingested")
        return WebhookResult(
            success=True,
            action="ingested",
            message=f"Added message {event.message_id} to conversation {conversation.id}",
            conversation_id=conversation.id,
            message_id=ingested.message.id,
            content=event.message,
            created=resolved.created,
            resolution_method=resolved.method,
            conflicts=resolved.conflicts,
            fanout=fanout,
        )

    def _notify(self, host_id: str, conversation_id: str, event: GuestMessageEvent) -> Optional[FanoutResult]:
        """Best effort: the message is already committed, push problems are only logged."""
        data = {
            "conversationId": conversation_id,
            "messageId": event.message_id or "",
            "url": f"{settings.app_url.rstrip('/')}/chat?conversation={conversation_id}",
            "timestamp": datetime.utcnow().isoformat(),
            "direction": "inbound",
        }
        try:
            result = NotificationFanout(self.db, self.push_client, source="webhook").notify(
                host_id,
                title=f"New message from {event.guest_name or 'guest'}",
                body=event.message,
                data=data,
            )
            self.db.commit()
            return result
        except Exception:
            self.db.rollback()
            logger.exception(f"[{self.request_id}] Push fan-out failed for conversation {conversation_id}")
            return None
