from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from enum import Enum

class AuthState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"

class AuthEvent(str, Enum):
    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    USER_UPDATED = "USER_UPDATED"

class IdentityUser(BaseModel):
    id: str
    email: Optional[str] = None
    emailConfirmedAt: Optional[str] = None
    userMetadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_gotrue(cls, payload: Dict[str, Any]) -> "IdentityUser":
        return cls(
            id=payload["id"],
            email=payload.get("email"),
            emailConfirmedAt=payload.get("email_confirmed_at"),
            userMetadata=payload.get("user_metadata") or {},
        )

class AuthSession(BaseModel):
    accessToken: str
    refreshToken: str
    tokenType: str = "bearer"
    expiresAt: Optional[int] = None  # epoch seconds
    user: IdentityUser

    @classmethod
    def from_gotrue(cls, payload: Dict[str, Any]) -> "AuthSession":
        return cls(
            accessToken=payload["access_token"],
            refreshToken=payload["refresh_token"],
            tokenType=payload.get("token_type", "bearer"),
            expiresAt=payload.get("expires_at"),
            user=IdentityUser.from_gotrue(payload["user"]),
        )

class SignUpResult(BaseModel):
    user: IdentityUser
    session: Optional[AuthSession] = None
