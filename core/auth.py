"""
Bearer-token principal and capability checks.

Tokens are issued by the platform's identity service; this module only decodes
them. Authorization is decided here, before any transport operation runs:
operators review requests, students act on their own requests and
subscriptions. The transport services never re-derive permissions.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config.settings import settings
from core.errors import AuthorizationError

logger = logging.getLogger(__name__)

# auto_error=False so a missing token is reported through our own envelope
security = HTTPBearer(auto_error=False)

STUDENT_ROLE = "student"
OPERATOR_ROLES = ("operator", "admin")


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str

    @property
    def is_operator(self) -> bool:
        return self.role in OPERATOR_ROLES

    @property
    def is_student(self) -> bool:
        return self.role == STUDENT_ROLE


class AuthenticationError(AuthorizationError):
    code = "unauthenticated"
    status_code = 401


def _extract_token(header_val: str) -> Optional[str]:
    """Helper to strip 'Bearer ' prefix if present."""
    if not header_val:
        return None
    hv = header_val.strip()
    if hv.lower().startswith("bearer "):
        return hv.split(None, 1)[1].strip()
    return hv  # accept raw token


def create_access_token(user_id: str, role: str, secret: Optional[str] = None) -> str:
    """Mint a token; used by local tooling and tests, production tokens come from the identity service."""
    return jwt.encode({"sub": user_id, "role": role}, secret or settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_principal(token_value: str) -> Principal:
    try:
        payload = jwt.decode(token_value, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.warning("Token expired")
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.warning("Token decode error: %s", e)
        raise AuthenticationError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Token has no subject")
    return Principal(user_id=str(user_id), role=str(payload.get("role", STUDENT_ROLE)))


async def get_current_principal(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    token_value = creds.credentials if creds and creds.credentials else None
    if not token_value:
        token_value = _extract_token(request.headers.get("Authorization", ""))
    if not token_value:
        logger.warning("Authentication failed: no bearer token on %s", request.url.path)
        raise AuthenticationError("Missing Authorization token")
    principal = decode_principal(token_value)
    request.state.user = {"user_id": principal.user_id, "role": principal.role}
    return principal


async def require_operator(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_operator:
        raise AuthorizationError("Operator role required")
    return principal


async def require_student(principal: Principal = Depends(get_current_principal)) -> Principal:
    if not principal.is_student:
        raise AuthorizationError("Student role required")
    return principal
