"""
Webhook Signature Verifier

Lodgify signs each delivery with HMAC-SHA256 over the raw request body,
using the secret returned when the subscription was created. The hex
digest arrives in the `ms-signature` header, optionally prefixed with
`sha256=`.
"""

import hmac
import logging
from typing import Optional

from ..models.tenant import WebhookEventKind
from ..utils.security import compute_signature
from .tenant_secrets import TenantSecretStore

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "ms-signature"
SIGNATURE_PREFIX = "sha256="


def normalize_signature(delivered: Optional[str]) -> str:
    if not delivered:
        return ""
    value = delivered.strip()
    if value.lower().startswith(SIGNATURE_PREFIX):
        value = value[len(SIGNATURE_PREFIX):]
    return value.lower()


def signature_matches(secret: str, raw_body: bytes, delivered: Optional[str]) -> bool:
    """Constant-time, case-insensitive comparison of hex digests"""
    provided = normalize_signature(delivered)
    if not secret or not provided:
        return False
    expected = compute_signature(secret, raw_body)
    return hmac.compare_digest(expected.encode("ascii"), provided.encode("ascii", "replace"))


class SignatureVerifier:
    """Pure check, fails closed when the host has no secret for the event kind."""

    def __init__(self, secrets: TenantSecretStore):
        self.secrets = secrets

    def verify(
        self,
        raw_body: bytes,
        delivered_signature: Optional[str],
        host_id: str,
        event_kind: WebhookEventKind
    ) -> bool:
        secret = self.secrets.get_secret(host_id, event_kind)
        if not secret:
            logger.debug(f"No {event_kind.value} secret for host {host_id}")
            return False
        return signature_matches(secret, raw_body, delivered_signature)
