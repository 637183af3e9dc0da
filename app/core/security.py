from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
import logging

import jwt
from jwt import PyJWTError
from fastapi import HTTPException, status

from app.core.config import settings

logger = logging.getLogger(__name__)


def create_access_token(user_id: str, expires_in: timedelta = timedelta(hours=1),
                        extra_claims: Optional[Dict[str, Any]] = None) -> str:
    """
    Issue a signed bearer token for a user.

    Sessions are owned by the portal's auth layer; this is used by scripts and
    tests that need to call the API as a given user.
    """
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "iat": now, "exp": now + expires_in}
    if extra_claims:
        payload.update(extra_claims)
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> Dict[str, Any]:
    """
    Verify a bearer token and return its claims.

    Raises:
        HTTPException: 401 if the token is invalid, expired or has no subject
    """
    if not settings.SECRET_KEY:
        logger.error("SECRET_KEY is not configured; cannot verify tokens")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication is not configured"
        )

    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            leeway=settings.JWT_CLOCK_SKEW_TOLERANCE_SECONDS,
            options={"require": ["sub", "exp"]}
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except PyJWTError as e:
        logger.warning(f"Token validation failed: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return payload
