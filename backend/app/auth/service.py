"""Bearer-token verification.

Identity is issued by the upstream auth service as an HS256 JWT whose
``sub`` claim is the user id. This module only verifies it; the
``create_access_token`` helper exists for local tooling and tests.
"""
import logging
import time
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import get_config
from app.errors import UnauthorizedError

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def create_access_token(sub: str, expires_minutes: Optional[int] = None) -> str:
    jwt_settings = get_config().secrets.jwt
    now = int(time.time())
    payload = {
        "sub": sub,
        "iat": now,
        "exp": now + 60 * (expires_minutes or jwt_settings.access_token_expire_minutes),
    }
    return jwt.encode(payload, jwt_settings.secret_key, algorithm=jwt_settings.algorithm)


def decode_token(token: str) -> dict:
    jwt_settings = get_config().secrets.jwt
    try:
        return jwt.decode(token, jwt_settings.secret_key, algorithms=[jwt_settings.algorithm])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired")
    except jwt.InvalidTokenError:
        raise UnauthorizedError("Invalid token")


def user_id_from_token(token: Optional[str]) -> str:
    """Verified user id carried by the token, or UnauthorizedError."""
    if not token:
        raise UnauthorizedError("Not authenticated")
    sub = decode_token(token).get("sub")
    if not sub:
        raise UnauthorizedError("Invalid token")
    return str(sub)


async def get_current_user_id(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    return user_id_from_token(creds.credentials if creds else None)
