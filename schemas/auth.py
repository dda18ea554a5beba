"""
Authentication Pydantic schemas.
"""
from typing import Optional

from pydantic import BaseModel, Field


class IdTokenRequest(BaseModel):
    """Body carrying an identity provider ID token."""
    idToken: str = Field(..., min_length=1, description="ID token issued by the identity provider")


class SignupRequest(IdTokenRequest):
    fullName: Optional[str] = Field(None, max_length=255)


class SessionUser(BaseModel):
    uid: str
    email: Optional[str] = None
    emailVerified: bool = False
    name: Optional[str] = None
    picture: Optional[str] = None
