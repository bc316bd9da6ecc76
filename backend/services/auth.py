# services/auth.py
# ============================================================================
# HANDMADE STORE BACKEND — CALLER IDENTITY
# ============================================================================
# Bearer tokens are HS256 JWTs issued by the auth service. This module only
# reads them; create_access_token exists for tooling and tests.
# ============================================================================

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from config import settings
from errors import Unauthorized
from schemas.store import UserRole

logger = structlog.get_logger(component="auth")

bearer_scheme = HTTPBearer(auto_error=False)


class Identity(BaseModel):
    user_id: str
    role: UserRole = UserRole.USER
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


def create_access_token(
    user_id: str,
    role: UserRole = UserRole.USER,
    email: Optional[str] = None,
    expires_in: Optional[timedelta] = None,
) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "role": role.value,
        "iat": now,
        "exp": now + (expires_in or timedelta(minutes=settings.AUTH_TOKEN_TTL_MINUTES)),
    }
    if email:
        claims["email"] = email
    return jwt.encode(claims, settings.AUTH_SECRET, algorithm=settings.AUTH_ALGORITHM)


def decode_token(token: str) -> Identity:
    """Validate a bearer token; raises Unauthorized."""
    try:
        claims = jwt.decode(token, settings.AUTH_SECRET, algorithms=[settings.AUTH_ALGORITHM])
    except jwt.PyJWTError as e:
        logger.info("token_rejected", reason=type(e).__name__)
        raise Unauthorized()

    try:
        return Identity(
            user_id=claims["sub"],
            role=UserRole(claims.get("role", UserRole.USER.value)),
            email=claims.get("email"),
        )
    except (KeyError, ValueError):
        logger.info("token_rejected", reason="bad_claims")
        raise Unauthorized()


# =============================================================================
# FASTAPI DEPENDENCIES
# =============================================================================

async def get_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Identity]:
    """Identity of the caller, or None for anonymous/invalid credentials."""
    if credentials is None:
        return None
    try:
        return decode_token(credentials.credentials)
    except Unauthorized:
        return None


async def require_user(identity: Optional[Identity] = Depends(get_identity)) -> Identity:
    if identity is None:
        raise Unauthorized()
    return identity


async def require_admin(identity: Optional[Identity] = Depends(get_identity)) -> Identity:
    if identity is None or not identity.is_admin:
        raise Unauthorized()
    return identity
