"""
Push and Notification Schemas
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field


# ==================
# Push dispatch
# ==================

class PushNotificationContent(BaseModel):
    title: str = ""
    body: str = ""


class PushSendRequest(BaseModel):
    """Accepts `to` or the legacy `fcmToken` field for the recipient token"""
    to: Optional[str] = None
    fcmToken: Optional[str] = None
    notification: PushNotificationContent = Field(default_factory=PushNotificationContent)
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def recipient(self) -> Optional[str]:
        return self.to or self.fcmToken


class PushSendResponse(BaseModel):
    success: bool
    messageId: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


# ==================
# Devices
# ==================

class DeviceRegisterRequest(BaseModel):
    device_id: str = Field(..., min_length=1, max_length=255)
    token: str = Field(..., min_length=1)
    platform: str = Field(default="web", pattern="^(web|ios|android)$")
    device_name: Optional[str] = Field(default=None, max_length=255)


class DeviceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    device_id: str
    device_name: Optional[str] = None
    platform: str
    is_active: bool
    last_active: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class DeviceCleanupResponse(BaseModel):
    deleted: int
    inactive_days: int


# ==================
# Notification queue
# ==================

class NotificationEnqueueRequest(BaseModel):
    recipient_id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=255)
    body: str = Field(..., min_length=1)
    type: str = "system"
    data: Dict[str, Any] = Field(default_factory=dict)
    conversation_id: Optional[str] = None
    message_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None


class NotificationJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    recipient_id: str
    type: str
    title: str
    status: str
    attempts: int
    max_attempts: int
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None


class QueueProcessResponse(BaseModel):
    processed: int
    success: int
    failed: int
    errors: List[str] = Field(default_factory=list)
