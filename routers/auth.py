"""
Authentication routes: signup, session cookie creation, logout and verification.
"""
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.dependencies import get_identity_provider
from core.exceptions import APIException, AuthenticationException
from core.logging import security_logger
from core.security import get_session_cookie, session_cookie_params
from db_config import get_async_db
from models.models import as_utc
from schemas.auth import IdTokenRequest, SessionUser, SignupRequest
from services.identity import IdentityProvider
from services.user_service import UserService

router = APIRouter(prefix="/api/auth", tags=["Authentication"])
logger = security_logger


@router.post("/signup")
async def signup(
    body: SignupRequest,
    identity: IdentityProvider = Depends(get_identity_provider),
    db: AsyncSession = Depends(get_async_db),
):
    """
    Register the user behind an ID token.

    Creates the profile row and a free-tier usage record. Signing up an
    existing user succeeds without changes.
    """
    try:
        claims = identity.verify_id_token(body.idToken)
    except AuthenticationException:
        raise AuthenticationException("Invalid authentication token")

    user, created = await UserService(db).signup(claims, body.fullName)
    if not created:
        return {
            "success": True,
            "message": "User already exists",
            "user": {"uid": user.uid, "email": user.email},
        }

    return {
        "success": True,
        "message": "User created successfully",
        "user": {
            "uid": user.uid,
            "email": user.email,
            "full_name": user.full_name,
            "avatar_url": user.avatar_url,
            "created_at": as_utc(user.created_at).isoformat(),
        },
    }


@router.post("/session")
async def create_session(
    body: IdTokenRequest,
    identity: IdentityProvider = Depends(get_identity_provider),
    db: AsyncSession = Depends(get_async_db),
):
    """Exchange an ID token for an httpOnly session cookie."""
    try:
        claims = identity.verify_id_token(body.idToken)
    except AuthenticationException:
        raise AuthenticationException("Failed to create session")

    token, _ = await identity.create_session_cookie(db, claims)

    response = JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"success": True, "message": "Session created successfully", "uid": claims.uid},
    )
    response.set_cookie(value=token, **session_cookie_params(settings.session_expire_days * 24 * 60 * 60))
    return response


@router.post("/logout")
async def logout(
    request: Request,
    identity: IdentityProvider = Depends(get_identity_provider),
    db: AsyncSession = Depends(get_async_db),
):
    """Clear the session cookie and revoke the session server-side."""
    cookie = get_session_cookie(request)
    if cookie:
        await identity.revoke_session_cookie(db, cookie)

    response = JSONResponse(content={"success": True, "message": "Logged out successfully"})
    response.set_cookie(value="", **session_cookie_params(0))
    return response


@router.api_route("/verify", methods=["GET", "POST"])
async def verify_session(
    request: Request,
    identity: IdentityProvider = Depends(get_identity_provider),
    db: AsyncSession = Depends(get_async_db),
):
    """Validate the session cookie and return its user."""
    cookie = get_session_cookie(request)
    if not cookie:
        raise AuthenticationException("No session cookie found")

    try:
        claims = await identity.verify_session_cookie(db, cookie)
    except APIException as e:
        logger.info("Session verification failed", reason=e.detail)
        raise AuthenticationException("Invalid session")

    return {
        "success": True,
        "message": "Session verified successfully",
        "user": SessionUser(uid=claims.uid, email=claims.email, emailVerified=claims.email_verified).model_dump(),
    }
