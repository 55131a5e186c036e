"""
Rate Limiter Configuration

In-memory storage by default; set RATE_LIMIT_STORAGE_URI (e.g. redis://)
when running more than one instance.
"""

import os
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request


def get_real_client_ip(request: Request) -> str:
    """Get real client IP behind reverse proxy"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


def get_webhook_rate_key(request: Request) -> str:
    """Webhook deliveries share Lodgify's egress IPs, so bucket them per host"""
    host_id = (request.query_params.get("host_id") or "").strip()
    if host_id:
        return f"host:{host_id}"
    return f"ip:{get_real_client_ip(request)}"


def create_limiter() -> Limiter:
    return Limiter(
        key_func=get_real_client_ip,
        storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
        default_limits=["200/minute"]
    )


# Global rate limiter instance
limiter = create_limiter()


# ================================
# RATE LIMIT CONFIGURATIONS
# ================================

RATE_LIMITS = {
    # Lodgify retries on its own, keep this generous
    "webhook": "300/minute",
    "push_send": "60/minute",
    "device_register": "30/minute",
    "config_save": "10/minute",
}


def get_rate_limit(operation: str) -> str:
    """Get rate limit for a specific operation."""
    return RATE_LIMITS.get(operation, "100/minute")
