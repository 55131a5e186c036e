"""
Lodgify Schemas

Pydantic models for Lodgify webhook payloads and the host-facing
configuration endpoints. Lodgify sends numeric ids; they are coerced to
strings so they compare equal to what we store.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field


# ==================
# Webhook payloads
# ==================

class LodgifyPayload(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)


class LodgifyGuest(LodgifyPayload):
    name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None


class LodgifyRoomType(LodgifyPayload):
    room_type_id: Optional[str] = None
    people: Optional[int] = None


class LodgifyBooking(LodgifyPayload):
    id: str
    status: Optional[str] = None
    source: Optional[str] = None
    date_arrival: Optional[str] = None
    date_departure: Optional[str] = None
    property_id: Optional[str] = None
    property_name: Optional[str] = None
    nights: Optional[int] = None
    currency_code: Optional[str] = None
    room_types: List[LodgifyRoomType] = Field(default_factory=list)


class BookingChangeEvent(LodgifyPayload):
    """booking_change webhook event"""
    action: Optional[str] = None
    booking: LodgifyBooking
    guest: Optional[LodgifyGuest] = None
    booking_total_amount: Optional[str] = None
    booking_currency_code: Optional[str] = None


class GuestMessageEvent(LodgifyPayload):
    """guest_message_received webhook event"""
    thread_uid: Optional[str] = None
    message_id: Optional[str] = None
    inbox_uid: Optional[str] = None
    guest_name: Optional[str] = None
    message: str = ""
    subject: Optional[str] = None
    creation_time: Optional[str] = None

    @property
    def booking_id(self) -> Optional[str]:
        """
        Lodgify booking id derived from inbox_uid.

        inbox_uid is the booking id prefixed with a single letter
        ("B12345" -> "12345").
        """
        if not self.inbox_uid or len(self.inbox_uid) < 2:
            return None
        return self.inbox_uid[1:]


# ==================
# Configuration
# ==================

class LodgifyConfigSave(BaseModel):
    api_key: str = Field(..., min_length=1, description="Lodgify API key")


class SubscriptionOutcome(BaseModel):
    event: str
    success: bool
    webhook_id: Optional[str] = None
    error: Optional[str] = None


class LodgifyConfigStatus(BaseModel):
    """Provisioning status. Never exposes the API key or signing secrets."""
    host_id: str
    webhook_configured: bool
    booking_webhook_id: Optional[str] = None
    message_webhook_id: Optional[str] = None
    has_booking_secret: bool = False
    has_message_secret: bool = False
    updated_at: Optional[datetime] = None


class ProvisioningResponse(BaseModel):
    success: bool
    config_saved: bool = True
    webhook_configured: bool = False
    timed_out: bool = False
    retryable: bool = False
    message: str = ""
    subscriptions: List[SubscriptionOutcome] = Field(default_factory=list)


class UnsubscribeResponse(BaseModel):
    success: bool
    message: str = ""
    subscriptions: List[SubscriptionOutcome] = Field(default_factory=list)


def parse_event_list(parsed: Any) -> List[Dict[str, Any]]:
    """Lodgify sends either a single event object or an array of them."""
    if isinstance(parsed, list):
        return [e for e in parsed if isinstance(e, dict)]
    if isinstance(parsed, dict):
        return [parsed]
    return []
