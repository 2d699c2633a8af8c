"""
Request identity and cron authorization.

User identity is a single opaque id taken from the ``X-User-ID`` header, with
a configured development fallback. The cron endpoint is guarded by a shared
bearer secret.
"""

from typing import Optional
import hmac

import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from infrastructure.config.settings import Settings, get_settings

logger = structlog.get_logger(__name__)

USER_ID_HEADER = "X-User-ID"


def get_app_settings(request: Request) -> Settings:
    """Settings the app was created with, else the environment"""
    return getattr(request.app.state, "settings", None) or get_settings()


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


async def get_user_id(
    x_user_id: Optional[str] = Header(default=None, alias=USER_ID_HEADER),
    settings: Settings = Depends(get_app_settings)
) -> str:
    user_id = (x_user_id or "").strip()
    return user_id or settings.default_user_id


async def verify_cron_secret(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
    settings: Settings = Depends(get_app_settings)
) -> None:
    """
    Reject cron calls that do not carry the configured secret

    Raises:
        HTTPException: 503 when no secret is configured, 401 on mismatch
    """

    if not settings.cron_secret:
        logger.error("CRON_SECRET is not configured")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Cron not configured")

    provided = extract_bearer_token(authorization)
    if not provided or not hmac.compare_digest(provided, settings.cron_secret):
        logger.warning("Rejected cron call")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"}
        )
