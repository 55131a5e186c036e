"""
Shared fixtures

- in-memory SQLite shared across threads (StaticPool)
- FastAPI app with get_db / get_push_client overridden
- a fake push client that records calls and returns canned results
- helpers to seed a Lodgify tenant and sign webhook bodies
"""

import os
import sys
import json
import threading
import time
from typing import Dict, List, Optional

# Must be set before airhost.config is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["EMERGENCY_ANALYSIS_ENABLED"] = "false"
os.environ["AUTH_JWT_SECRET"] = "test-jwt-secret"
os.environ["SERVICE_ROLE_KEY"] = "test-service-key"
os.environ["OPENAI_API_KEY"] = ""
os.environ["LOG_JSON"] = "false"

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from airhost.database import Base, get_db
import airhost.models  # noqa: F401
from airhost.models.tenant import LodgifyConfig
from airhost.services.fcm_client import PushErrorCode, PushResult, get_push_client
from airhost.utils.rate_limiter import limiter
from airhost.utils.security import compute_signature

HOST_ID = "host-1"
OTHER_HOST_ID = "host-2"
BOOKING_SECRET = "booking-secret-1"
MESSAGE_SECRET = "message-secret-1"


class FakePushClient:
    """Stands in for FCMClient. Results are keyed by token."""

    configured = True

    def __init__(self, results: Optional[Dict[str, PushResult]] = None, delay: float = 0.0):
        self.results = results or {}
        self.delay = delay
        self.calls: List[Dict] = []
        self._lock = threading.Lock()

    def send(self, token, title="", body="", data=None) -> PushResult:
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.calls.append({"token": token, "title": title, "body": body, "data": dict(data or {})})
        if not token:
            return PushResult(success=False, error="FCM token is required but not provided",
                              error_code=PushErrorCode.MISSING_RECIPIENT)
        return self.results.get(token) or PushResult(success=True, message_id=f"projects/p/messages/{token}")

    @property
    def tokens_sent(self) -> List[str]:
        return [c["token"] for c in self.calls]


def invalid_token_result() -> PushResult:
    return PushResult(
        success=False,
        error="FCM 404: Requested entity was not found.",
        error_code=PushErrorCode.INVALID_TOKEN,
        status_code=404,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def push_client():
    return FakePushClient()


@pytest.fixture
def client(session_factory, push_client):
    from airhost.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_push_client] = lambda: push_client
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True


# ==================
# Helpers
# ==================

def seed_tenant(
    db,
    host_id: str = HOST_ID,
    booking_secret: Optional[str] = BOOKING_SECRET,
    message_secret: Optional[str] = MESSAGE_SECRET,
    api_key: str = "lodgify-api-key"
) -> LodgifyConfig:
    config = LodgifyConfig(
        host_id=host_id,
        api_key=api_key,
        booking_webhook_secret=booking_secret,
        message_webhook_secret=message_secret,
        booking_webhook_id=f"wh-b-{host_id}" if booking_secret else None,
        message_webhook_id=f"wh-m-{host_id}" if message_secret else None,
        webhook_configured=bool(booking_secret and message_secret),
    )
    db.add(config)
    db.commit()
    return config


def sign(secret: str, body: bytes) -> str:
    return compute_signature(secret, body)


def encode_body(payload) -> bytes:
    return json.dumps(payload).encode("utf-8")


def host_token(host_id: str = HOST_ID) -> str:
    return jwt.encode({"sub": host_id}, "test-jwt-secret", algorithm="HS256")


def host_headers(host_id: str = HOST_ID) -> Dict[str, str]:
    return {"Authorization": f"Bearer {host_token(host_id)}"}


def service_headers() -> Dict[str, str]:
    return {"Authorization": "Bearer test-service-key"}


def message_event(
    message_id="999",
    inbox_uid: Optional[str] = "B12345",
    thread_uid: Optional[str] = "t-1",
    guest_name: Optional[str] = "Jane Guest",
    message: str = "Hello, what time is check-in?"
) -> Dict:
    event = {
        "action": "guest_message_received",
        "message_id": message_id,
        "guest_name": guest_name,
        "message": message,
        "subject": "Question",
        "creation_time": "2024-01-10T09:00:00",
    }
    if inbox_uid is not None:
        event["inbox_uid"] = inbox_uid
    if thread_uid is not None:
        event["thread_uid"] = thread_uid
    return event


def booking_event(booking_id="12345", guest_name: str = "Jane Guest", status: str = "Booked") -> Dict:
    return {
        "action": "booking_change",
        "booking": {
            "id": booking_id,
            "status": status,
            "source": "Airbnb",
            "date_arrival": "2024-01-15T00:00:00",
            "date_departure": "2024-01-18T00:00:00",
            "property_id": 555,
            "property_name": "Seaside Loft",
            "nights": 3,
            "room_types": [{"room_type_id": 1, "people": 2}, {"room_type_id": 2, "people": 1}],
        },
        "guest": {
            "name": guest_name,
            "email": "jane@example.com",
            "phone_number": "+33 (6) 12-34-56-78",
        },
        "booking_total_amount": "450.50",
        "booking_currency_code": "EUR",
    }


def post_message(client, payload, host_id: Optional[str] = HOST_ID, secret: str = MESSAGE_SECRET, signature=None):
    body = encode_body(payload)
    headers = {"Content-Type": "application/json"}
    sig = signature if signature is not None else sign(secret, body)
    if sig:
        headers["ms-signature"] = sig
    url = "/api/webhooks/lodgify/message-webhook"
    if host_id:
        url += f"?host_id={host_id}"
    return client.post(url, content=body, headers=headers)


def post_booking(client, payload, host_id: Optional[str] = HOST_ID, secret: str = BOOKING_SECRET, signature=None):
    body = encode_body(payload)
    headers = {"Content-Type": "application/json"}
    sig = signature if signature is not None else sign(secret, body)
    if sig:
        headers["ms-signature"] = sig
    url = "/api/webhooks/lodgify/booking-webhook"
    if host_id:
        url += f"?host_id={host_id}"
    return client.post(url, content=body, headers=headers)
