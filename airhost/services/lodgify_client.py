"""
Lodgify API Client

Single client for the Lodgify public API. Authentication is the host's
API key in the X-ApiKey header. Only the webhook subscription endpoints
are used by this service.

Lodgify API Documentation: https://docs.lodgify.com/
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from ..config import settings

logger = logging.getLogger(__name__)


@dataclass
class LodgifyResponse:
    """Wrapper for Lodgify API responses with structured error info"""
    success: bool
    status_code: int
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    should_retry: bool = False


ERROR_MESSAGES = {
    400: "Invalid request",
    401: "Invalid or missing API key",
    403: "Access denied",
    404: "Not found",
    429: "Too many requests",
}


class LodgifyClient:
    def __init__(self, api_key: str, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.api_key = api_key
        self.base_url = (base_url or settings.lodgify_base_url).rstrip("/")
        self.timeout = timeout or settings.lodgify_timeout_seconds

    def _get_headers(self) -> Dict[str, str]:
        return {
            "X-ApiKey": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _make_request(self, method: str, endpoint: str, json_body: Optional[Dict] = None) -> LodgifyResponse:
        url = f"{self.base_url}{endpoint}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.request(method, url, json=json_body, headers=self._get_headers())
        except httpx.TimeoutException:
            logger.warning(f"Lodgify {method} {endpoint} timed out")
            return LodgifyResponse(success=False, status_code=0, error="Request timed out", should_retry=True)
        except httpx.HTTPError as e:
            logger.warning(f"Lodgify {method} {endpoint} failed: {e}")
            return LodgifyResponse(success=False, status_code=0, error=str(e), should_retry=True)

        data = None
        if response.content:
            try:
                data = response.json()
            except ValueError:
                data = {"raw": response.text[:500]}

        if 200 <= response.status_code < 300:
            return LodgifyResponse(success=True, status_code=response.status_code, data=data)

        error = ERROR_MESSAGES.get(response.status_code, f"Lodgify error {response.status_code}")
        if isinstance(data, dict) and data.get("message"):
            error = f"{error}: {data['message']}"
        logger.warning(f"Lodgify {method} {endpoint} -> {response.status_code}: {error}")
        return LodgifyResponse(
            success=False,
            status_code=response.status_code,
            data=data,
            error=error,
            should_retry=response.status_code == 429 or response.status_code >= 500,
        )

    # ==================
    # Webhooks
    # ==================

    def subscribe_webhook(self, event: str, target_url: str) -> LodgifyResponse:
        """
        Subscribe to a webhook event.

        Success data contains `id` and `secret` (the HMAC signing secret).
        """
        return self._make_request(
            "POST",
            "/webhooks/v1/subscribe",
            {"event": event, "target_url": target_url},
        )

    def unsubscribe_webhook(self, webhook_id: str) -> LodgifyResponse:
        return self._make_request("DELETE", f"/webhooks/v1/unsubscribe/{webhook_id}")
