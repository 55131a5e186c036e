# Models package
from .tenant import LodgifyConfig, WebhookEventKind
from .conversation import Conversation, ConversationStatus, ResolutionMethod
from .message import Message, MessageDirection, MessageStatus
from .device import PushSubscription
from .notification_queue import NotificationJob, NotificationJobStatus, NotificationJobType
from .conversation_analysis import ConversationAnalysis, EmergencyType

__all__ = [
    "LodgifyConfig", "WebhookEventKind",
    "Conversation", "ConversationStatus", "ResolutionMethod",
    "Message", "MessageDirection", "MessageStatus",
    "PushSubscription",
    "NotificationJob", "NotificationJobStatus", "NotificationJobType",
    "ConversationAnalysis", "EmergencyType",
]
