"""
Tests for the message ingestor

Tests cover:
- First delivery inserts and bumps the conversation rollups
- Redelivery caught by the pre-check
- Redelivery that slips past the pre-check is stopped by the unique key
"""

import uuid

from conftest import HOST_ID, message_event


def _event(**kwargs):
    from airhost.schemas.lodgify import GuestMessageEvent

    return GuestMessageEvent.model_validate(message_event(**kwargs))


def _conversation(db):
    from airhost.models import Conversation

    conversation = Conversation(id=str(uuid.uuid4()), host_id=HOST_ID, unread_count=0)
    db.add(conversation)
    db.commit()
    return conversation


def _message_count(db, conversation_id):
    from airhost.models import Message

    return db.query(Message).filter(Message.conversation_id == conversation_id).count()


class TestIngest:
    def test_first_delivery_inserts(self, db):
        from airhost.services.message_ingestor import MessageIngestor

        conversation = _conversation(db)

        result = MessageIngestor(db).ingest(conversation.id, _event(message_id=999, message="Hi"))
        db.commit()

        assert result.was_duplicate is False
        assert result.message.lodgify_message_id == "999"
        db.expire_all()
        assert conversation.unread_count == 1
        assert conversation.last_message == "Hi"

    def test_redelivery_caught_by_lookup(self, db):
        from airhost.services.message_ingestor import MessageIngestor

        conversation = _conversation(db)
        ingestor = MessageIngestor(db)
        first = ingestor.ingest(conversation.id, _event(message_id=999))
        db.commit()

        second = ingestor.ingest(conversation.id, _event(message_id=999))

        assert second.was_duplicate is True
        assert second.message.id == first.message.id

    def test_lookup_miss_stopped_by_unique_key(self, db, monkeypatch):
        """A concurrent delivery committed between the lookup and the insert"""
        from airhost.services.message_ingestor import MessageIngestor

        conversation = _conversation(db)
        ingestor = MessageIngestor(db)
        first = ingestor.ingest(conversation.id, _event(message_id=999))
        db.commit()

        real_find = MessageIngestor.find_existing
        lookups = []

        def stale_then_real(self, conversation_id, lodgify_message_id):
            lookups.append(lodgify_message_id)
            if len(lookups) == 1:
                return None
            return real_find(self, conversation_id, lodgify_message_id)

        monkeypatch.setattr(MessageIngestor, "find_existing", stale_then_real)

        second = ingestor.ingest(conversation.id, _event(message_id=999))
        db.commit()

        assert second.was_duplicate is True
        assert second.message.id == first.message.id
        assert len(lookups) == 2
        assert _message_count(db, conversation.id) == 1
        db.expire_all()
        assert conversation.unread_count == 1
