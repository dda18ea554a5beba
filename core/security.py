"""
Request authentication dependencies.

API routes authenticate with ``Authorization: Bearer <ID token>``; the session
cookie is only used by the auth routes and the page access middleware.
"""
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.config import settings
from core.dependencies import get_identity_provider
from core.exceptions import AuthenticationException, AuthorizationException
from core.logging import security_logger
from services.identity import IdentityClaims, IdentityProvider

logger = security_logger

# auto_error=False so a missing header goes through our 401 envelope
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> IdentityClaims:
    """
    Resolve the caller from the Bearer ID token.

    Raises:
        AuthenticationException: missing, malformed, invalid or expired token
    """
    if credentials is None or not credentials.credentials:
        logger.warning("Missing bearer token")
        raise AuthenticationException("Unauthorized")

    claims = identity.verify_id_token(credentials.credentials)
    logger.debug("Bearer token verified", uid=claims.uid)
    return claims


def require_same_user(user_id: str, current_user: IdentityClaims) -> None:
    """Profile endpoints return 403, not 404, when acting on another account."""
    if current_user.uid != user_id:
        logger.warning("Profile access denied", uid=current_user.uid, target_uid=user_id)
        raise AuthorizationException("Forbidden")


def get_session_cookie(request: Request) -> Optional[str]:
    return request.cookies.get(settings.session_cookie_name)


def session_cookie_params(max_age_seconds: int) -> dict:
    """Cookie attributes for the session cookie."""
    return {
        "key": settings.session_cookie_name,
        "max_age": max_age_seconds,
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "strict",
        "path": "/",
    }
