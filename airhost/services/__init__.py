# Services package
from .tenant_secrets import TenantSecretStore
from .signature import SignatureVerifier, signature_matches
from .conversation_resolver import ConversationResolver, ResolveResult
from .message_ingestor import MessageIngestor, IngestResult
from .fcm_client import FCMClient, PushResult, PushErrorCode, get_push_client, init_push_client
from .notification_fanout import NotificationFanout, FanoutResult, DeviceOutcome
from .notification_queue import NotificationQueueProcessor, enqueue_notification
from .device_registry import DeviceRegistry, cleanup_inactive_devices
from .lodgify_client import LodgifyClient, LodgifyResponse
from .webhook_provisioning import WebhookProvisioningService, ProvisioningResult, SubscriptionResult
from .webhook_router import LodgifyWebhookRouter, WebhookError, WebhookResult
from .emergency_analysis import EmergencyClassifier, run_emergency_analysis

__all__ = [
    "TenantSecretStore",
    "SignatureVerifier", "signature_matches",
    "ConversationResolver", "ResolveResult",
    "MessageIngestor", "IngestResult",
    "FCMClient", "PushResult", "PushErrorCode", "get_push_client", "init_push_client",
    "NotificationFanout", "FanoutResult", "DeviceOutcome",
    "NotificationQueueProcessor", "enqueue_notification",
    "DeviceRegistry", "cleanup_inactive_devices",
    "LodgifyClient", "LodgifyResponse",
    "WebhookProvisioningService", "ProvisioningResult", "SubscriptionResult",
    "LodgifyWebhookRouter", "WebhookError", "WebhookResult",
    "EmergencyClassifier", "run_emergency_analysis",
]
