"""
Identity provider adapter.

ID tokens are JWTs signed by the identity provider; session cookies are JWTs
minted here whose ``jti`` is tracked in ``user_sessions`` so they can be
revoked on logout or account deletion.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import AuthenticationException
from core.logging import security_logger
from models.models import UserSession, as_utc, utcnow

logger = security_logger

ID_TOKEN_TYPE = "id"
SESSION_TOKEN_TYPE = "session"


@dataclass
class IdentityClaims:
    uid: str
    email: Optional[str]
    email_verified: bool = False
    name: Optional[str] = None
    picture: Optional[str] = None


class IdentityProvider:
    """Verifies ID tokens and manages session cookies."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        issuer: str = "voiceframe-identity",
        session_expire_days: int = 5,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.session_expire_days = session_expire_days

    def create_id_token(
        self,
        uid: str,
        email: Optional[str] = None,
        email_verified: bool = True,
        name: Optional[str] = None,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        """Mint an ID token as the identity provider would (tests and local development)."""
        now = datetime.now(timezone.utc)
        claims = {
            "sub": uid,
            "email": email,
            "email_verified": email_verified,
            "name": name,
            "iss": self.issuer,
            "iat": now,
            "exp": now + (expires_delta or timedelta(hours=1)),
            "typ": ID_TOKEN_TYPE,
        }
        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def _decode(self, token: str, expected_type: str) -> dict:
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm], issuer=self.issuer)
        except ExpiredSignatureError:
            logger.warning("Token expired", token_type=expected_type)
            raise AuthenticationException("Token expired")
        except JWTError as e:
            logger.warning("Token verification failed", token_type=expected_type, error=str(e))
            raise AuthenticationException("Invalid token")

        if payload.get("typ") != expected_type or not payload.get("sub"):
            logger.warning("Token has unexpected claims", token_type=expected_type)
            raise AuthenticationException("Invalid token")
        return payload

    def verify_id_token(self, token: str) -> IdentityClaims:
        """Verify an ID token and return its identity claims."""
        payload = self._decode(token, ID_TOKEN_TYPE)
        return IdentityClaims(
            uid=payload["sub"],
            email=payload.get("email"),
            email_verified=bool(payload.get("email_verified", False)),
            name=payload.get("name"),
            picture=payload.get("picture"),
        )

    async def create_session_cookie(self, db: AsyncSession, claims: IdentityClaims) -> tuple[str, datetime]:
        """Mint a session cookie for verified claims and record it server-side."""
        now = utcnow()
        expires_at = now + timedelta(days=self.session_expire_days)
        session_id = secrets.token_hex(16)

        token = jwt.encode(
            {
                "sub": claims.uid,
                "email": claims.email,
                "email_verified": claims.email_verified,
                "iss": self.issuer,
                "iat": now,
                "exp": expires_at,
                "jti": session_id,
                "typ": SESSION_TOKEN_TYPE,
            },
            self.secret_key,
            algorithm=self.algorithm,
        )

        db.add(UserSession(uid=claims.uid, session_token=session_id, expires_at=expires_at))
        await db.commit()

        logger.info("Session created", uid=claims.uid, expires_at=expires_at.isoformat())
        return token, expires_at

    async def verify_session_cookie(self, db: AsyncSession, cookie: str) -> IdentityClaims:
        """Verify a session cookie's signature and that it has not been revoked."""
        payload = self._decode(cookie, SESSION_TOKEN_TYPE)

        result = await db.execute(
            select(UserSession).where(
                UserSession.session_token == payload.get("jti"),
                UserSession.uid == payload["sub"],
            )
        )
        session = result.scalar_one_or_none()
        if session is None or as_utc(session.expires_at) <= utcnow():
            logger.warning("Session revoked or expired", uid=payload["sub"])
            raise AuthenticationException("Session expired or revoked")

        return IdentityClaims(
            uid=payload["sub"],
            email=payload.get("email"),
            email_verified=bool(payload.get("email_verified", False)),
        )

    async def revoke_session_cookie(self, db: AsyncSession, cookie: str) -> bool:
        """Revoke one session. Unverifiable cookies are ignored."""
        try:
            payload = self._decode(cookie, SESSION_TOKEN_TYPE)
        except AuthenticationException:
            return False

        result = await db.execute(delete(UserSession).where(UserSession.session_token == payload.get("jti")))
        await db.commit()
        logger.info("Session revoked", uid=payload["sub"])
        return result.rowcount > 0

    async def delete_user(self, db: AsyncSession, uid: str) -> int:
        """Remove the user from the identity provider by revoking every session."""
        result = await db.execute(delete(UserSession).where(UserSession.uid == uid))
        await db.commit()
        logger.info("Identity removed", uid=uid, sessions_revoked=result.rowcount)
        return result.rowcount
