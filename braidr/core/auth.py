import time
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from braidr.schemas.auth import AuthSession

def get_token_claims(token: str) -> Dict[str, Any]:
    """
    Read the claims of an access token without verifying its signature.

    The signing key belongs to the auth provider; the client only needs the
    expiry and subject to decide when to refresh.
    """
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        return {}

def get_token_subject(token: str) -> Optional[str]:
    return get_token_claims(token).get("sub")

def get_session_expiry(session: AuthSession) -> Optional[int]:
    """Expiry in epoch seconds, from the session itself or the token's exp claim."""
    if session.expiresAt is not None:
        return session.expiresAt
    exp = get_token_claims(session.accessToken).get("exp")
    return int(exp) if exp is not None else None

def is_session_expired(
    session: AuthSession, margin_seconds: int = 0, now: Optional[float] = None
) -> bool:
    expires_at = get_session_expiry(session)
    if expires_at is None:
        return False
    if now is None:
        now = time.time()
    return now + margin_seconds >= expires_at
