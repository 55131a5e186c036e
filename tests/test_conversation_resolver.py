"""
Tests for the Conversation Resolver

Tests cover:
- Lookup chain order (booking id, thread uid, guest name, create)
- Guest-name fallback restrictions and ambiguity
- Monotonic identifier merge and conflict reporting
- Creation race: exactly one conversation per (host, booking)
"""

import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import HOST_ID, OTHER_HOST_ID, booking_event, message_event


def _event(**kwargs):
    from airhost.schemas.lodgify import GuestMessageEvent

    return GuestMessageEvent.model_validate(message_event(**kwargs))


def _booking(**kwargs):
    from airhost.schemas.lodgify import BookingChangeEvent

    return BookingChangeEvent.model_validate(booking_event(**kwargs))


def _add_conversation(db, host_id=HOST_ID, created_at=None, **fields):
    from airhost.models import Conversation

    conversation = Conversation(
        id=str(uuid.uuid4()),
        host_id=host_id,
        created_at=created_at or datetime.utcnow(),
        **fields
    )
    db.add(conversation)
    db.commit()
    return conversation


class TestHelpers:
    def test_clean_phone_keeps_digits_and_plus(self):
        from airhost.services.conversation_resolver import clean_phone

        assert clean_phone("+33 (6) 12-34-56-78") == "+33612345678"
        assert clean_phone("ext.") is None
        assert clean_phone(None) is None

    def test_parse_lodgify_date_uses_date_part(self):
        from datetime import date
        from airhost.services.conversation_resolver import parse_lodgify_date

        assert parse_lodgify_date("2024-03-01T15:00:00") == date(2024, 3, 1)
        assert parse_lodgify_date("2024-03-01") == date(2024, 3, 1)
        assert parse_lodgify_date("not a date") is None
        assert parse_lodgify_date(None) is None

    def test_booking_id_derived_from_inbox_uid(self):
        assert _event(inbox_uid="B12345").booking_id == "12345"
        assert _event(inbox_uid="B").booking_id is None
        assert _event(inbox_uid=None).booking_id is None


class TestLookupChain:
    def test_booking_id_wins_over_thread(self, db):
        from airhost.services.conversation_resolver import ConversationResolver

        by_booking = _add_conversation(db, lodgify_booking_id="12345")
        _add_conversation(db, lodgify_thread_uid="t-1")

        result = ConversationResolver(db).resolve(HOST_ID, _event(inbox_uid="B12345", thread_uid="t-1"))

        assert result.conversation.id == by_booking.id
        assert result.method == "booking_id"
        assert result.created is False

    def test_thread_lookup_when_booking_unknown(self, db):
        from airhost.services.conversation_resolver import ConversationResolver

        by_thread = _add_conversation(db, lodgify_thread_uid="t-1")

        result = ConversationResolver(db).resolve(HOST_ID, _event(inbox_uid="B999", thread_uid="t-1"))

        assert result.conversation.id == by_thread.id
        assert result.method == "thread_uid"
        assert result.conversation.lodgify_booking_id == "999"

    def test_lookups_are_scoped_to_host(self, db):
        from airhost.services.conversation_resolver import ConversationResolver

        other = _add_conversation(db, host_id=OTHER_HOST_ID, lodgify_booking_id="12345")

        result = ConversationResolver(db).resolve(HOST_ID, _event(inbox_uid="B12345"))

        assert result.created is True
        assert result.conversation.id != other.id
        assert result.conversation.host_id == HOST_ID

    def test_creates_when_nothing_matches(self, db):
        from airhost.services.conversation_resolver import ConversationResolver

        result = ConversationResolver(db).resolve(HOST_ID, _event(inbox_uid="B1", thread_uid="t-x"))

        assert result.created is True
        assert result.method == "created"
        assert result.conversation.resolution_method == "created"
        assert result.conversation.lodgify_booking_id == "1"
        assert result.conversation.lodgify_thread_uid == "t-x"


class TestGuestNameFallback:
    def test_matches_only_threadless_conversations(self, db):
        from airhost.services.conversation_resolver import ConversationResolver

        _add_conversation(db, guest_name="Sam", lodgify_thread_uid="t-old")

        result = ConversationResolver(db).resolve(
            HOST_ID, _event(inbox_uid=None, thread_uid="t-new", guest_name="Sam")
        )

        assert result.created is True

    def test_most_recent_candidate_used_and_flagged_ambiguous(self, db):
        from airhost.services.conversation_resolver import ConversationResolver

        now = datetime.utcnow()
        _add_conversation(db, guest_name="Sam", lodgify_booking_id="1", created_at=now - timedelta(days=2))
        newest = _add_conversation(db, guest_name="Sam", lodgify_booking_id="2", created_at=now)

        result = ConversationResolver(db).resolve(
            HOST_ID, _event(inbox_uid=None, thread_uid="t-new", guest_name="Sam")
        )

        assert result.conversation.id == newest.id
        assert result.method == "guest_name"
        assert result.ambiguous is True
        assert result.conversation.lodgify_thread_uid == "t-new"

    def test_guest_name_match_is_recorded_on_row(self, db):
        from airhost.services.conversation_resolver import ConversationResolver

        _add_conversation(db, guest_name="Kim", resolution_method="booking_event")

        result = ConversationResolver(db).resolve(
            HOST_ID, _event(inbox_uid=None, thread_uid="t-k", guest_name="Kim")
        )

        assert result.ambiguous is False
        assert result.conversation.resolution_method == "guest_name"


class TestIdentifierMerge:
    def test_populated_thread_never_overwritten(self, db):
        from airhost.services.conversation_resolver import ConversationResolver

        existing = _add_conversation(db, lodgify_booking_id="12345", lodgify_thread_uid="t-original")

        result = ConversationResolver(db).resolve(HOST_ID, _event(inbox_uid="B12345", thread_uid="t-other"))

        assert result.conversation.id == existing.id
        assert result.conversation.lodgify_thread_uid == "t-original"
        assert result.conflicts == ["lodgify_thread_uid"]

    def test_populated_booking_id_never_overwritten(self, db):
        from airhost.services.conversation_resolver import ConversationResolver

        existing = _add_conversation(db, lodgify_booking_id="111", lodgify_thread_uid="t-1")

        result = ConversationResolver(db).resolve(HOST_ID, _event(inbox_uid="B222", thread_uid="t-1"))

        assert result.conversation.id == existing.id
        assert result.conversation.lodgify_booking_id == "111"
        assert result.conflicts == ["lodgify_booking_id"]

    def test_conflict_is_counted(self, db):
        from airhost.services.conversation_resolver import ConversationResolver
        from airhost.utils.metrics import identity_conflicts_total

        before = identity_conflicts_total.get(field="lodgify_thread_uid")
        _add_conversation(db, lodgify_booking_id="5", lodgify_thread_uid="t-a")

        ConversationResolver(db).resolve(HOST_ID, _event(inbox_uid="B5", thread_uid="t-b"))

        assert identity_conflicts_total.get(field="lodgify_thread_uid") == before + 1

    def test_booking_id_owned_elsewhere_reresolves_to_owner(self, db):
        from airhost.services.conversation_resolver import ConversationResolver

        threadless_named = _add_conversation(db, guest_name="Lee")
        owner = _add_conversation(db, lodgify_booking_id="900", lodgify_thread_uid="t-900")
        resolver = ConversationResolver(db)

        conversation, conflicts = resolver._backfill(HOST_ID, threadless_named, "900", None)

        assert conversation.id == owner.id
        assert conflicts == []


class TestCreationRace:
    def test_lost_insert_returns_winner(self, db):
        """Another writer committed the booking after our lookup"""
        from airhost.services.conversation_resolver import ConversationResolver

        winner = _add_conversation(db, lodgify_booking_id="12345")
        resolver = ConversationResolver(db)

        conversation, created = resolver._create(HOST_ID, {"lodgify_booking_id": "12345"}, "booking_event")

        assert created is False
        assert conversation.id == winner.id

    def test_booking_resolution_is_idempotent(self, db):
        from airhost.models import Conversation
        from airhost.services.conversation_resolver import ConversationResolver

        first = ConversationResolver(db).resolve_booking(HOST_ID, _booking())
        db.commit()
        second = ConversationResolver(db).resolve_booking(HOST_ID, _booking())
        db.commit()

        assert first.created is True
        assert second.created is False
        assert first.conversation.id == second.conversation.id
        assert db.query(Conversation).count() == 1

    def test_concurrent_booking_events_create_one_row(self, tmp_path):
        """Two sessions racing on a file database"""
        from airhost.database import Base
        from airhost.models import Conversation
        from airhost.services.conversation_resolver import ConversationResolver

        engine = create_engine(
            f"sqlite:///{tmp_path / 'race.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(bind=engine)
        Session = sessionmaker(bind=engine, autoflush=False)

        def handle():
            session = Session()
            try:
                result = ConversationResolver(session).resolve_booking(HOST_ID, _booking(booking_id="777"))
                session.commit()
                return result.conversation.id, result.created
            finally:
                session.close()

        try:
            with ThreadPoolExecutor(max_workers=2) as pool:
                outcomes = list(pool.map(lambda _: handle(), range(2)))

            session = Session()
            try:
                rows = session.query(Conversation).filter(Conversation.lodgify_booking_id == "777").all()
            finally:
                session.close()
        finally:
            engine.dispose()

        assert len(rows) == 1
        assert {conversation_id for conversation_id, _ in outcomes} == {rows[0].id}
        assert sum(1 for _, created in outcomes if created) == 1
