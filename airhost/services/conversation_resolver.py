"""
Conversation Resolver

Finds or creates the conversation an inbound Lodgify event belongs to.

Guest message lookup chain (first hit wins, always scoped to the host):
1. lodgify_booking_id  (derived from inbox_uid)
2. lodgify_thread_uid
3. guest_name, only among conversations with no thread yet, most recent first
4. create a new conversation

Booking events only use step 1 before creating.

Identifiers are merged monotonically: a missing booking id or thread uid
is back-filled from the event, a populated one is never overwritten. A
disagreement is reported back to the caller and counted.
"""

import re
import uuid
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..models.conversation import Conversation, ConversationStatus, ResolutionMethod
from ..schemas.lodgify import BookingChangeEvent, GuestMessageEvent
from ..utils.db_helpers import insert_ignore
from ..utils.metrics import record_resolver_strategy, record_identity_conflict

logger = logging.getLogger(__name__)


@dataclass
class ResolveResult:
    conversation: Conversation
    created: bool
    method: str
    conflicts: List[str] = field(default_factory=list)
    ambiguous: bool = False


def clean_phone(phone: Optional[str]) -> Optional[str]:
    """Keep only digits and '+'"""
    if not phone:
        return None
    cleaned = re.sub(r"[^+\d]", "", phone)
    return cleaned or None


def parse_lodgify_date(value: Optional[str]) -> Optional[date]:
    """'2024-01-15T00:00:00' -> date(2024, 1, 15)"""
    if not value:
        return None
    try:
        return date.fromisoformat(value.split("T")[0])
    except ValueError:
        logger.warning(f"Unparseable Lodgify date: {value!r}")
        return None


def parse_amount(value: Optional[str]) -> Optional[float]:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class ConversationResolver:
    def __init__(self, db: Session):
        self.db = db

    # ==================
    # Lookups
    # ==================

    def find_by_booking_id(self, host_id: str, booking_id: Optional[str]) -> Optional[Conversation]:
        if not booking_id:
            return None
        return self.db.query(Conversation).filter(
            Conversation.host_id == host_id,
            Conversation.lodgify_booking_id == booking_id
        ).first()

    def find_by_thread_uid(self, host_id: str, thread_uid: Optional[str]) -> Optional[Conversation]:
        if not thread_uid:
            return None
        return self.db.query(Conversation).filter(
            Conversation.host_id == host_id,
            Conversation.lodgify_thread_uid == thread_uid
        ).order_by(Conversation.created_at.desc()).first()

    def find_by_guest_name(self, host_id: str, guest_name: Optional[str]) -> Tuple[Optional[Conversation], bool]:
        """
        Most recent thread-less conversation with this guest name.

        Returns (conversation, ambiguous). Two candidates are fetched only
        to detect ambiguity; the most recent one is still used.
        """
        if not guest_name:
            return None, False

        candidates = self.db.query(Conversation).filter(
            Conversation.host_id == host_id,
            Conversation.guest_name == guest_name,
            Conversation.lodgify_thread_uid.is_(None)
        ).order_by(Conversation.created_at.desc()).limit(2).all()

        if not candidates:
            return None, False
        return candidates[0], len(candidates) > 1

    # ==================
    # Guest message path
    # ==================

    def resolve(self, host_id: str, event: GuestMessageEvent) -> ResolveResult:
        booking_id = event.booking_id
        thread_uid = event.thread_uid
        ambiguous = False

        conversation = self.find_by_booking_id(host_id, booking_id)
        method = ResolutionMethod.BOOKING_ID.value

        if conversation is None:
            conversation = self.find_by_thread_uid(host_id, thread_uid)
            method = ResolutionMethod.THREAD_UID.value

        if conversation is None:
            conversation, ambiguous = self.find_by_guest_name(host_id, event.guest_name)
            method = ResolutionMethod.GUEST_NAME.value
            if conversation is not None:
                logger.info(
                    f"Low-confidence guest_name match for host {host_id}: "
                    f"'{event.guest_name}' -> conversation {conversation.id}"
                )
                if ambiguous:
                    logger.warning(
                        f"Ambiguous guest_name match for host {host_id}: several thread-less "
                        f"conversations named '{event.guest_name}', using most recent {conversation.id}"
                    )
                conversation.resolution_method = ResolutionMethod.GUEST_NAME.value

        created = False
        if conversation is None:
            conversation, created = self._create(
                host_id,
                {
                    "guest_name": event.guest_name,
                    "lodgify_booking_id": booking_id,
                    "lodgify_thread_uid": thread_uid,
                },
                ResolutionMethod.CREATED.value
            )
            method = ResolutionMethod.CREATED.value if created else ResolutionMethod.BOOKING_ID.value

        conversation, conflicts = self._backfill(host_id, conversation, booking_id, thread_uid)

        record_resolver_strategy(method)
        return ResolveResult(
            conversation=conversation,
            created=created,
            method=method,
            conflicts=conflicts,
            ambiguous=ambiguous
        )

    # ==================
    # Booking path
    # ==================

    def resolve_booking(self, host_id: str, event: BookingChangeEvent) -> ResolveResult:
        """Find the conversation for a booking or create it from the booking details."""
        booking = event.booking
        guest = event.guest

        existing = self.find_by_booking_id(host_id, booking.id)
        if existing is not None:
            self._fill_guest_details(existing, event)
            record_resolver_strategy(ResolutionMethod.BOOKING_ID.value)
            return ResolveResult(existing, created=False, method=ResolutionMethod.BOOKING_ID.value)

        guest_count = None
        if booking.room_types:
            guest_count = sum(room.people or 0 for room in booking.room_types)

        conversation, created = self._create(
            host_id,
            {
                "guest_name": guest.name if guest else None,
                "guest_phone": clean_phone(guest.phone_number) if guest else None,
                "guest_email": guest.email if guest else None,
                "guest_count": guest_count,
                "check_in_date": parse_lodgify_date(booking.date_arrival),
                "check_out_date": parse_lodgify_date(booking.date_departure),
                "nights": booking.nights,
                "lodgify_booking_id": booking.id,
                "lodgify_thread_uid": None,
                "lodgify_property_id": booking.property_id,
                "property_name": booking.property_name,
                "booking_source": booking.source,
                "booking_status": booking.status,
                "total_amount": parse_amount(event.booking_total_amount),
                "currency": event.booking_currency_code or booking.currency_code,
                "last_message_at": datetime.utcnow(),
            },
            ResolutionMethod.BOOKING_EVENT.value
        )

        method = ResolutionMethod.BOOKING_EVENT.value if created else ResolutionMethod.BOOKING_ID.value
        record_resolver_strategy(method)
        return ResolveResult(conversation, created=created, method=method)

    # ==================
    # Internals
    # ==================

    def _create(self, host_id: str, fields: Dict, method: str) -> Tuple[Conversation, bool]:
        """
        Insert a conversation guarded by the (host_id, lodgify_booking_id)
        unique constraint. The loser of a creation race gets the winner's row.
        """
        now = datetime.utcnow()
        conversation_id = str(uuid.uuid4())
        values = {
            "id": conversation_id,
            "host_id": host_id,
            "status": ConversationStatus.ACTIVE.value,
            "resolution_method": method,
            "unread_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        values.update(fields)

        inserted = insert_ignore(
            self.db,
            Conversation,
            values,
            conflict_columns=["host_id", "lodgify_booking_id"]
        )

        if inserted:
            conversation = self.db.get(Conversation, conversation_id)
            logger.info(
                f"Created conversation {conversation_id} for host {host_id} "
                f"(booking={fields.get('lodgify_booking_id')}, thread={fields.get('lodgify_thread_uid')})"
            )
            return conversation, True

        booking_id = fields.get("lodgify_booking_id")
        winner = self.find_by_booking_id(host_id, booking_id)
        if winner is None:
            raise RuntimeError(
                f"Conversation insert for host {host_id} booking {booking_id} conflicted but no row was found"
            )
        logger.info(f"Lost creation race for host {host_id} booking {booking_id}, using {winner.id}")
        return winner, False

    def _backfill(
        self,
        host_id: str,
        conversation: Conversation,
        booking_id: Optional[str],
        thread_uid: Optional[str]
    ) -> Tuple[Conversation, List[str]]:
        conflicts: List[str] = []

        if booking_id:
            if conversation.lodgify_booking_id is None:
                owner = self.find_by_booking_id(host_id, booking_id)
                if owner is not None and owner.id != conversation.id:
                    # Another conversation claimed this booking since the lookup
                    logger.warning(
                        f"Booking {booking_id} already owned by conversation {owner.id}, "
                        f"re-resolving from {conversation.id}"
                    )
                    conversation = owner
                else:
                    conversation.lodgify_booking_id = booking_id
            elif conversation.lodgify_booking_id != booking_id:
                conflicts.append("lodgify_booking_id")

        if thread_uid:
            if conversation.lodgify_thread_uid is None:
                conversation.lodgify_thread_uid = thread_uid
            elif conversation.lodgify_thread_uid != thread_uid:
                conflicts.append("lodgify_thread_uid")

        for field_name in conflicts:
            record_identity_conflict(field_name)
            logger.warning(
                f"Identity conflict on conversation {conversation.id} ({field_name}): "
                f"stored={getattr(conversation, field_name)!r} "
                f"event={booking_id if field_name == 'lodgify_booking_id' else thread_uid!r}"
            )

        self.db.flush()
        return conversation, conflicts

    def _fill_guest_details(self, conversation: Conversation, event: BookingChangeEvent) -> None:
        """Fill empty guest and stay fields from a later booking event."""
        booking = event.booking
        guest = event.guest
        candidates = {
            "guest_name": guest.name if guest else None,
            "guest_phone": clean_phone(guest.phone_number) if guest else None,
            "guest_email": guest.email if guest else None,
            "check_in_date": parse_lodgify_date(booking.date_arrival),
            "check_out_date": parse_lodgify_date(booking.date_departure),
            "lodgify_property_id": booking.property_id,
            "property_name": booking.property_name,
            "nights": booking.nights,
        }
        for name, value in candidates.items():
            if value is not None and getattr(conversation, name) is None:
                setattr(conversation, name, value)

        # Status and source follow Lodgify
        if booking.status:
            conversation.booking_status = booking.status
        if booking.source and not conversation.booking_source:
            conversation.booking_source = booking.source
        self.db.flush()
