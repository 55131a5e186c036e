"""
FastAPI auth dependencies

- get_current_host: host-facing endpoints (identity provider bearer token)
- get_caller: internal endpoints that accept the service key or a host token
"""

from dataclasses import dataclass
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .security import decode_host_token, is_service_key
from .audit_logger import log_auth_event, get_request_id, get_client_ip

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class Caller:
    host_id: Optional[str] = None
    is_service: bool = False


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_caller(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Caller:
    if credentials is None:
        raise _unauthorized("Missing bearer token")

    token = credentials.credentials
    if is_service_key(token):
        return Caller(is_service=True)

    payload = decode_host_token(token)
    if payload is None:
        log_auth_event(
            "BEARER",
            success=False,
            details="Invalid or expired token",
            ip_address=get_client_ip(request),
            request_id=get_request_id(request)
        )
        raise _unauthorized("Invalid or expired token")

    return Caller(host_id=payload["sub"])


def get_current_host(caller: Caller = Depends(get_caller)) -> str:
    """Host id of the authenticated user. Service callers are rejected."""
    if not caller.host_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Host token required"
        )
    return caller.host_id


def require_service(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_service:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Service key required"
        )
    return caller
