"""Security audit logging module"""
import logging
import uuid
from typing import Optional
from fastapi import Request


# Configure security logger
security_logger = logging.getLogger("security_audit")
security_logger.setLevel(logging.INFO)

# Console handler with structured format
handler = logging.StreamHandler()
formatter = logging.Formatter(
    '%(asctime)s | %(levelname)s | %(message)s | request_id=%(request_id)s'
)
handler.setFormatter(formatter)
security_logger.addHandler(handler)
security_logger.propagate = False


def get_request_id(request: Request) -> str:
    """Get or create request ID for correlation"""
    if hasattr(request.state, 'request_id'):
        return request.state.request_id
    return str(uuid.uuid4())[:8]


def get_client_ip(request: Request) -> str:
    """Get real client IP from request"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def log_webhook_auth_event(
    event_kind: str,
    host_id: Optional[str],
    success: bool,
    reason: Optional[str] = None,
    ip_address: Optional[str] = None,
    request_id: Optional[str] = None
):
    """
    Log a webhook authentication decision.

    The payload itself is never logged, only who sent what kind of event
    and why it was refused.
    """
    extra = {'request_id': request_id or 'N/A'}

    status = "SUCCESS" if success else "FAILURE"
    message = f"WEBHOOK_AUTH:{event_kind} | status={status} | host_id={host_id or '-'}"

    if ip_address:
        message += f" | ip={ip_address}"
    if reason:
        message += f" | reason={reason}"

    if success:
        security_logger.info(message, extra=extra)
    else:
        security_logger.warning(message, extra=extra)


def log_auth_event(
    event_type: str,
    subject: Optional[str] = None,
    success: bool = True,
    details: Optional[str] = None,
    ip_address: Optional[str] = None,
    request_id: Optional[str] = None
):
    """Log API authentication events (host tokens, service key)"""
    extra = {'request_id': request_id or 'N/A'}

    status = "SUCCESS" if success else "FAILURE"
    message = f"AUTH:{event_type} | status={status}"

    if subject:
        message += f" | subject={subject}"
    if ip_address:
        message += f" | ip={ip_address}"
    if details:
        message += f" | details={details}"

    if success:
        security_logger.info(message, extra=extra)
    else:
        security_logger.warning(message, extra=extra)
