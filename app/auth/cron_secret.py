"""
cron_secret.py
--------------
Purpose:
    Shared-secret bearer check for scheduler-invoked endpoints.

Notes:
    - The scheduler sends "Authorization: Bearer <CRON_SECRET>".
    - Missing header, wrong secret, or no secret configured -> 401.
    - Comparison is constant-time.
"""

import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

_security = HTTPBearer(auto_error=False)


def verify_cron_secret(token: str | None) -> bool:
    expected = settings.CRON_SECRET
    if not expected or not token:
        return False
    return hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))


def cron_auth_dependency(
    credentials: HTTPAuthorizationCredentials | None = Depends(_security),
) -> None:
    token = credentials.credentials if credentials else None
    if not verify_cron_secret(token):
        logger.warning(
            "Rejected cron invocation",
            has_credentials=credentials is not None,
            secret_configured=bool(settings.CRON_SECRET),
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
