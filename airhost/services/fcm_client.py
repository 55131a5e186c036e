"""
FCM HTTP v1 Client

Sends push messages through Firebase Cloud Messaging:
- OAuth2 access token from google-auth service-account credentials
- Token reused while the credentials report it valid
- Data-only messages (title/body travel in data, values stringified)
- Structured error classification so callers can deactivate dead tokens

Service-account credentials come from FCM_SERVICE_ACCOUNT_JSON or
FCM_SERVICE_ACCOUNT_FILE and are loaded once at startup by
init_push_client().
"""

import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from ..config import settings

logger = logging.getLogger(__name__)

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"
FCM_SEND_URL = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"


class PushErrorCode:
    INVALID_TOKEN = "invalid_token"
    MISSING_RECIPIENT = "missing_recipient"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_ERROR = "upstream_error"
    NETWORK_ERROR = "network_error"
    NOT_CONFIGURED = "not_configured"
    AUTH_ERROR = "auth_error"


# Substrings FCM uses when the registration token itself is dead
INVALID_TOKEN_MARKERS = (
    "unregistered",
    "not a valid fcm registration token",
    "invalid-registration-token",
    "registration-token-not-registered",
    "requested entity was not found",
)


@dataclass
class PushResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def token_invalid(self) -> bool:
        return self.error_code == PushErrorCode.INVALID_TOKEN


@dataclass
class ServiceAccount:
    project_id: str
    client_email: str
    private_key: str
    token_uri: str = DEFAULT_TOKEN_URI

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceAccount":
        missing = [k for k in ("project_id", "client_email", "private_key") if not data.get(k)]
        if missing:
            raise ValueError(f"Service account is missing: {', '.join(missing)}")
        return cls(
            project_id=data["project_id"],
            client_email=data["client_email"],
            private_key=data["private_key"],
            token_uri=data.get("token_uri") or DEFAULT_TOKEN_URI,
        )

    def to_info(self) -> Dict[str, str]:
        return {
            "type": "service_account",
            "project_id": self.project_id,
            "client_email": self.client_email,
            "private_key": self.private_key,
            "token_uri": self.token_uri,
        }


def load_service_account() -> Optional[ServiceAccount]:
    """Read the service account from the environment, or None if unset."""
    raw = settings.fcm_service_account_json
    if not raw and settings.fcm_service_account_file:
        with open(settings.fcm_service_account_file, "r", encoding="utf-8") as f:
            raw = f.read()
    if not raw:
        return None
    return ServiceAccount.from_dict(json.loads(raw))


def classify_fcm_error(status_code: int, body: Dict[str, Any]) -> PushResult:
    error = body.get("error") if isinstance(body, dict) else None
    message = ""
    fcm_status = ""
    details_codes = []

    if isinstance(error, dict):
        message = str(error.get("message") or "")
        fcm_status = str(error.get("status") or "")
        for detail in error.get("details") or []:
            if isinstance(detail, dict) and detail.get("errorCode"):
                details_codes.append(str(detail["errorCode"]))
    elif error:
        message = str(error)

    haystack = " ".join([message, fcm_status] + details_codes).lower()

    if status_code == 404 or any(marker in haystack for marker in INVALID_TOKEN_MARKERS):
        code = PushErrorCode.INVALID_TOKEN
    elif status_code == 400 and "registration token" in haystack:
        code = PushErrorCode.INVALID_TOKEN
    elif "recipient of the message is not set" in haystack:
        code = PushErrorCode.MISSING_RECIPIENT
    elif status_code == 429 or "quota_exceeded" in haystack:
        code = PushErrorCode.RATE_LIMITED
    else:
        code = PushErrorCode.UPSTREAM_ERROR

    return PushResult(
        success=False,
        error=f"FCM {status_code}: {message or fcm_status or 'unknown error'}",
        error_code=code,
        status_code=status_code,
    )


class FCMClient:
    """Thread-safe; one instance is shared by the process."""

    def __init__(
        self,
        account: Optional[ServiceAccount],
        timeout: Optional[float] = None,
        credentials: Optional[service_account.Credentials] = None
    ):
        self.account = account
        self.timeout = timeout or settings.fcm_timeout_seconds
        self._credentials = credentials
        self._lock = threading.Lock()
        self._client = httpx.Client(timeout=self.timeout)

    @property
    def configured(self) -> bool:
        return self.account is not None

    def close(self):
        self._client.close()

    # ==================
    # OAuth2
    # ==================

    def _get_credentials(self) -> service_account.Credentials:
        if self._credentials is None:
            self._credentials = service_account.Credentials.from_service_account_info(
                self.account.to_info(), scopes=[FCM_SCOPE]
            )
        return self._credentials

    def get_access_token(self) -> str:
        with self._lock:
            credentials = self._get_credentials()
            if not credentials.valid:
                credentials.refresh(GoogleAuthRequest())
            return credentials.token

    # ==================
    # Send
    # ==================

    def send(
        self,
        token: Optional[str],
        title: str = "",
        body: str = "",
        data: Optional[Dict[str, Any]] = None
    ) -> PushResult:
        if not token or not token.strip():
            return PushResult(
                success=False,
                error="FCM token is required but not provided",
                error_code=PushErrorCode.MISSING_RECIPIENT,
            )

        if not self.configured:
            return PushResult(
                success=False,
                error="Push credentials are not configured",
                error_code=PushErrorCode.NOT_CONFIGURED,
            )

        payload_data = {key: str(value) for key, value in (data or {}).items() if value is not None}
        if title:
            payload_data.setdefault("title", title)
        if body:
            payload_data.setdefault("body", body)

        message = {"message": {"token": token, "data": payload_data}}

        try:
            access_token = self.get_access_token()
        except (GoogleAuthError, ValueError) as e:
            logger.error(f"FCM auth failed: {e}")
            return PushResult(success=False, error=str(e), error_code=PushErrorCode.AUTH_ERROR)

        try:
            response = self._client.post(
                FCM_SEND_URL.format(project_id=self.account.project_id),
                json=message,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            logger.warning(f"FCM network error: {e}")
            return PushResult(success=False, error=str(e), error_code=PushErrorCode.NETWORK_ERROR)

        try:
            response_body = response.json()
        except ValueError:
            response_body = {"error": {"message": response.text[:200]}}

        if response.status_code == 200:
            return PushResult(
                success=True,
                message_id=response_body.get("name"),
                status_code=200,
            )

        result = classify_fcm_error(response.status_code, response_body)
        logger.warning(f"FCM send failed for token {token[:12]}...: {result.error}")
        return result


# ==================
# Process-wide client
# ==================

_push_client: Optional[FCMClient] = None
_push_client_lock = threading.Lock()


def init_push_client() -> FCMClient:
    """Load credentials and build the shared client. Called from the app lifespan."""
    global _push_client
    with _push_client_lock:
        if _push_client is None:
            account = load_service_account()
            if account is None:
                logger.warning("FCM credentials not configured, push notifications disabled")
            else:
                logger.info(f"FCM client ready for project {account.project_id}")
            _push_client = FCMClient(account)
        return _push_client


def shutdown_push_client() -> None:
    global _push_client
    with _push_client_lock:
        if _push_client is not None:
            _push_client.close()
            _push_client = None


def get_push_client() -> FCMClient:
    """FastAPI dependency / accessor for the shared client"""
    return _push_client or init_push_client()
