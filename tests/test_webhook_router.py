"""
Tests for the Lodgify webhook flows

Tests cover:
- Message webhook: new conversation, idempotent redelivery
- Booking webhook: creation with details, one confirmation message, redelivery
- Identity convergence between booking and message events
- Request validation (payload, tenant)
"""

import pytest
from datetime import date

from conftest import (
    HOST_ID, OTHER_HOST_ID, MESSAGE_SECRET,
    seed_tenant, sign, encode_body, message_event, booking_event,
    post_message, post_booking,
)


def _conversations(db, host_id=HOST_ID):
    from airhost.models import Conversation

    db.expire_all()
    return db.query(Conversation).filter(Conversation.host_id == host_id).all()


def _messages(db, conversation_id):
    from airhost.models import Message

    return db.query(Message).filter(Message.conversation_id == conversation_id).all()


class TestMessageWebhook:
    """guest_message_received"""

    def test_new_message_creates_conversation(self, client, db, push_client):
        """inbox B12345 / thread t-1 / message 999 with no prior conversation"""
        seed_tenant(db)

        response = post_message(client, message_event(message_id=999))

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert body["message"].startswith("SUCCESS:")

        conversations = _conversations(db)
        assert len(conversations) == 1
        conversation = conversations[0]
        assert conversation.lodgify_booking_id == "12345"
        assert conversation.lodgify_thread_uid == "t-1"
        assert conversation.unread_count == 1
        assert conversation.last_message == "Hello, what time is check-in?"
        assert conversation.guest_name == "Jane Guest"
        assert body["conversation_id"] == conversation.id

        messages = _messages(db, conversation.id)
        assert len(messages) == 1
        assert messages[0].lodgify_message_id == "999"
        assert messages[0].direction == "inbound"

    def test_redelivery_is_idempotent(self, client, db):
        """Same delivery twice: one message, unread_count 1, success both times"""
        seed_tenant(db)
        payload = message_event(message_id=999)

        first = post_message(client, payload)
        second = post_message(client, payload)

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["status"] == "success"
        assert "already exists" in second.json()["message"]

        conversations = _conversations(db)
        assert len(conversations) == 1
        assert conversations[0].unread_count == 1
        assert len(_messages(db, conversations[0].id)) == 1

    def test_redelivery_does_not_push_again(self, client, db, push_client):
        from airhost.services.device_registry import DeviceRegistry

        seed_tenant(db)
        DeviceRegistry(db).register_device(HOST_ID, "laptop", "token-a")
        payload = message_event()

        post_message(client, payload)
        post_message(client, payload)

        assert push_client.tokens_sent == ["token-a"]

    def test_two_messages_increment_unread(self, client, db):
        seed_tenant(db)

        post_message(client, message_event(message_id="m-1", message="first"))
        post_message(client, message_event(message_id="m-2", message="second"))

        conversations = _conversations(db)
        assert len(conversations) == 1
        assert conversations[0].unread_count == 2
        assert conversations[0].last_message == "second"

    def test_push_payload_fields(self, client, db, push_client):
        from airhost.services.device_registry import DeviceRegistry

        seed_tenant(db)
        DeviceRegistry(db).register_device(HOST_ID, "phone", "token-p", platform="android")

        response = post_message(client, message_event(message_id=42))

        assert response.json()["notified_devices"] == 1
        call = push_client.calls[0]
        assert call["title"] == "New message from Jane Guest"
        assert call["data"]["conversationId"] == response.json()["conversation_id"]
        assert call["data"]["messageId"] == "42"
        assert call["data"]["direction"] == "inbound"
        assert "conversation=" in call["data"]["url"]

    def test_push_failure_does_not_fail_webhook(self, client, db, push_client):
        from airhost.services.device_registry import DeviceRegistry

        def broken_send(*args, **kwargs):
            raise RuntimeError("FCM exploded")

        seed_tenant(db)
        DeviceRegistry(db).register_device(HOST_ID, "phone", "token-p")
        push_client.send = broken_send

        response = post_message(client, message_event())

        assert response.status_code == 200
        assert len(_conversations(db)) == 1

    def test_thread_only_message_creates_conversation_without_booking(self, client, db):
        seed_tenant(db)

        response = post_message(client, message_event(inbox_uid=None, thread_uid="t-9"))

        assert response.status_code == 200
        conversation = _conversations(db)[0]
        assert conversation.lodgify_booking_id is None
        assert conversation.lodgify_thread_uid == "t-9"

    def test_same_thread_reuses_conversation(self, client, db):
        seed_tenant(db)

        post_message(client, message_event(message_id="1", inbox_uid=None, thread_uid="t-9"))
        post_message(client, message_event(message_id="2", inbox_uid=None, thread_uid="t-9"))

        conversations = _conversations(db)
        assert len(conversations) == 1
        assert conversations[0].unread_count == 2

    def test_tenants_are_isolated(self, client, db):
        seed_tenant(db)
        seed_tenant(db, host_id=OTHER_HOST_ID, booking_secret="b2", message_secret="m2")
        payload = message_event()

        post_message(client, payload)
        post_message(client, payload, host_id=OTHER_HOST_ID, secret="m2")

        assert len(_conversations(db, HOST_ID)) == 1
        assert len(_conversations(db, OTHER_HOST_ID)) == 1
        assert _conversations(db, HOST_ID)[0].id != _conversations(db, OTHER_HOST_ID)[0].id

    def test_array_payload_processes_first_event(self, client, db):
        seed_tenant(db)

        response = post_message(client, [message_event(message_id="a"), message_event(message_id="b")])

        assert response.status_code == 200
        conversation = _conversations(db)[0]
        assert [m.lodgify_message_id for m in _messages(db, conversation.id)] == ["a"]


class TestBookingWebhook:
    """booking_change"""

    def test_booking_creates_conversation_with_details(self, client, db):
        seed_tenant(db)

        response = post_booking(client, booking_event())

        assert response.status_code == 200
        assert response.json()["message"] == "Booking processed successfully"

        conversation = _conversations(db)[0]
        assert response.json()["conversation_id"] == conversation.id
        assert conversation.lodgify_booking_id == "12345"
        assert conversation.lodgify_thread_uid is None
        assert conversation.guest_name == "Jane Guest"
        assert conversation.guest_phone == "+33612345678"
        assert conversation.guest_email == "jane@example.com"
        assert conversation.guest_count == 3
        assert conversation.check_in_date == date(2024, 1, 15)
        assert conversation.check_out_date == date(2024, 1, 18)
        assert conversation.nights == 3
        assert conversation.lodgify_property_id == "555"
        assert conversation.property_name == "Seaside Loft"
        assert conversation.total_amount == pytest.approx(450.5)
        assert conversation.currency == "EUR"
        assert conversation.booking_source == "Airbnb"
        assert conversation.unread_count == 0

    def test_booking_adds_one_outbound_confirmation(self, client, db):
        seed_tenant(db)

        post_booking(client, booking_event())
        post_booking(client, booking_event())

        conversation = _conversations(db)[0]
        messages = _messages(db, conversation.id)
        assert len(messages) == 1
        assert messages[0].direction == "outbound"
        assert "Seaside Loft" in messages[0].content
        assert "2024-01-15" in messages[0].content
        assert "2024-01-18" in messages[0].content

    def test_booking_redelivery_reports_existing(self, client, db):
        seed_tenant(db)

        first = post_booking(client, booking_event())
        second = post_booking(client, booking_event(status="Cancelled"))

        assert second.status_code == 200
        assert second.json()["message"] == "Conversation already exists"
        assert second.json()["conversation_id"] == first.json()["conversation_id"]
        conversations = _conversations(db)
        assert len(conversations) == 1
        assert conversations[0].booking_status == "Cancelled"

    def test_booking_without_booking_id_rejected(self, client, db):
        seed_tenant(db)
        payload = booking_event()
        del payload["booking"]["id"]

        response = post_booking(client, payload)

        assert response.status_code == 400
        assert _conversations(db) == []


class TestIdentityConvergence:
    """Booking and message events land on the same row"""

    def test_booking_then_message_backfills_thread(self, client, db):
        seed_tenant(db)

        booking = post_booking(client, booking_event(booking_id="12345"))
        message = post_message(client, message_event(inbox_uid="B12345", thread_uid="t-77"))

        assert booking.json()["conversation_id"] == message.json()["conversation_id"]
        conversations = _conversations(db)
        assert len(conversations) == 1
        assert conversations[0].lodgify_booking_id == "12345"
        assert conversations[0].lodgify_thread_uid == "t-77"
        assert conversations[0].unread_count == 1

    def test_message_then_booking_reuses_conversation(self, client, db):
        seed_tenant(db)

        message = post_message(client, message_event(inbox_uid="B12345", thread_uid="t-1"))
        booking = post_booking(client, booking_event(booking_id="12345"))

        assert booking.json()["message"] == "Conversation already exists"
        assert booking.json()["conversation_id"] == message.json()["conversation_id"]
        conversation = _conversations(db)[0]
        assert conversation.guest_email == "jane@example.com"
        assert conversation.property_name == "Seaside Loft"

    def test_thread_first_then_booking_id_is_backfilled(self, client, db):
        seed_tenant(db)

        post_message(client, message_event(message_id="1", inbox_uid=None, thread_uid="t-5"))
        post_message(client, message_event(message_id="2", inbox_uid="B777", thread_uid="t-5"))

        conversations = _conversations(db)
        assert len(conversations) == 1
        assert conversations[0].lodgify_booking_id == "777"

    def test_guest_name_fallback_merges_booking_conversation(self, client, db):
        """Booking conversation (no thread) picked up by a message with neither known id"""
        seed_tenant(db)

        post_booking(client, booking_event(booking_id="500", guest_name="Alex Doe"))
        response = post_message(
            client,
            message_event(inbox_uid=None, thread_uid="t-new", guest_name="Alex Doe")
        )

        assert response.json()["resolution_method"] == "guest_name"
        conversations = _conversations(db)
        assert len(conversations) == 1
        assert conversations[0].lodgify_thread_uid == "t-new"
        assert conversations[0].lodgify_booking_id == "500"
        assert conversations[0].resolution_method == "guest_name"


class TestConstraintBackedDedup:
    def test_lookup_miss_is_reported_as_duplicate_without_push(self, client, db, push_client, monkeypatch):
        """Second delivery skips the lookup; the unique key turns it into a duplicate"""
        from airhost.services.device_registry import DeviceRegistry
        from airhost.services.message_ingestor import MessageIngestor

        seed_tenant(db)
        DeviceRegistry(db).register_device(HOST_ID, "laptop", "token-a")
        payload = message_event(message_id=999)
        post_message(client, payload)

        real_find = MessageIngestor.find_existing
        lookups = []

        def stale_then_real(self, conversation_id, lodgify_message_id):
            lookups.append(lodgify_message_id)
            if len(lookups) == 1:
                return None
            return real_find(self, conversation_id, lodgify_message_id)

        monkeypatch.setattr(MessageIngestor, "find_existing", stale_then_real)

        response = post_message(client, payload)

        assert response.status_code == 200
        assert response.json()["status"] == "success"
        assert "already exists" in response.json()["message"]
        assert lookups == ["999", "999"]

        conversations = _conversations(db)
        assert len(conversations) == 1
        assert conversations[0].unread_count == 1
        assert len(_messages(db, conversations[0].id)) == 1
        assert push_client.tokens_sent == ["token-a"]


class TestRequestValidation:
    def test_unknown_tenant_api_key_returns_400(self, client, db):
        seed_tenant(db, api_key="")

        response = post_message(client, message_event())

        assert response.status_code == 400
        assert response.json()["error"] == "ERROR: Client identification required"

    def test_invalid_json_returns_400(self, client, db):
        seed_tenant(db)
        body = b"{not json"

        response = client.post(
            f"/api/webhooks/lodgify/message-webhook?host_id={HOST_ID}",
            content=body,
            headers={"ms-signature": sign(MESSAGE_SECRET, body)},
        )

        assert response.status_code == 400
        assert response.json()["status"] == "error"

    def test_empty_event_list_returns_400(self, client, db):
        seed_tenant(db)

        response = post_message(client, [])

        assert response.status_code == 400
        assert "No events" in response.json()["error"]

    def test_event_without_identifiers_returns_400(self, client, db):
        seed_tenant(db)

        response = post_message(client, message_event(inbox_uid=None, thread_uid=None, guest_name=None))

        assert response.status_code == 400
        assert _conversations(db) == []

    def test_background_analysis_scheduled_for_new_messages(self, client, db, monkeypatch):
        from airhost.config import settings
        from airhost.routers import webhooks

        calls = []
        monkeypatch.setattr(settings, "emergency_analysis_enabled", True)
        monkeypatch.setattr(webhooks, "run_emergency_analysis", lambda *args: calls.append(args))
        seed_tenant(db)
        payload = message_event(message="Water everywhere in the bathroom!")

        post_message(client, payload)
        post_message(client, payload)

        assert len(calls) == 1
        host_id, conversation_id, message_id, content = calls[0]
        assert host_id == HOST_ID
        assert content == "Water everywhere in the bathroom!"


class TestUnexpectedErrors:
    def test_message_webhook_returns_structured_500(self, client, db, monkeypatch):
        from airhost.services.webhook_router import LodgifyWebhookRouter

        def explode(self, raw_body, signature, host_id):
            raise RuntimeError("conversation insert conflicted but no row was found")

        seed_tenant(db)
        monkeypatch.setattr(LodgifyWebhookRouter, "handle_message", explode)

        response = post_message(client, message_event())

        assert response.status_code == 500
        assert response.json() == {"error": "ERROR: Internal error", "status": "error"}

    def test_booking_webhook_returns_structured_500(self, client, db, monkeypatch):
        from airhost.services.webhook_router import LodgifyWebhookRouter

        def explode(self, raw_body, signature, host_id):
            raise RuntimeError("boom")

        seed_tenant(db)
        monkeypatch.setattr(LodgifyWebhookRouter, "handle_booking", explode)

        response = post_booking(client, booking_event())

        assert response.status_code == 500
        assert response.json() == {"error": "Internal error"}


class TestWebhookRateLimit:
    def _request(self, query: bytes, client_ip: str = "10.0.0.1"):
        from starlette.requests import Request

        return Request({
            "type": "http",
            "method": "POST",
            "path": "/api/webhooks/lodgify/message-webhook",
            "query_string": query,
            "headers": [],
            "client": (client_ip, 4321),
        })

    def test_key_is_per_host(self):
        from airhost.utils.rate_limiter import get_webhook_rate_key

        assert get_webhook_rate_key(self._request(b"host_id=host-1")) == "host:host-1"
        assert get_webhook_rate_key(self._request(b"host_id=host-2")) == "host:host-2"

    def test_key_falls_back_to_client_ip(self):
        from airhost.utils.rate_limiter import get_webhook_rate_key

        assert get_webhook_rate_key(self._request(b"", client_ip="10.9.8.7")) == "ip:10.9.8.7"

    def test_busy_host_does_not_throttle_others(self, client, db):
        from airhost.utils.rate_limiter import RATE_LIMITS, limiter

        allowed = int(RATE_LIMITS["webhook"].split("/")[0])
        limiter.reset()
        limiter.enabled = True
        try:
            for _ in range(allowed):
                post_message(client, message_event(), host_id=HOST_ID, signature="sha256=00")

            throttled = post_message(client, message_event(), host_id=HOST_ID, signature="sha256=00")
            other = post_message(client, message_event(), host_id=OTHER_HOST_ID, signature="sha256=00")
        finally:
            limiter.enabled = False
            limiter.reset()

        assert throttled.status_code == 429
        assert other.status_code == 401
