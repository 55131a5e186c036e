import hashlib
import hmac
import secrets
from typing import Optional
from jose import JWTError, jwt
from ..config import settings


def decode_host_token(token: str) -> Optional[dict]:
    """
    Decode and verify an access token issued by the identity provider.

    Returns the claims, or None when the token is invalid or expired.
    """
    if not settings.auth_jwt_secret:
        return None

    options = {}
    kwargs = {}
    if settings.auth_jwt_audience:
        kwargs["audience"] = settings.auth_jwt_audience
    else:
        options["verify_aud"] = False

    try:
        payload = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            options=options,
            **kwargs
        )
    except JWTError:
        return None

    if not payload.get("sub"):
        return None
    return payload


def is_service_key(token: str) -> bool:
    """Constant-time check against the privileged service key"""
    if not settings.service_role_key or not token:
        return False
    return secrets.compare_digest(token.encode(), settings.service_role_key.encode())


def compute_signature(secret: str, raw_body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body"""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
