import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from braidr.core.auth import get_token_subject, is_session_expired
from braidr.core.exceptions import NetworkError, ProviderError, StorageError
from braidr.core.supabase import SupabaseClient
from braidr.db.storage import KeyValueStorage, AUTH_TOKENS_KEY
from braidr.schemas.auth import AuthEvent, AuthSession, IdentityUser, SignUpResult

logger = logging.getLogger(__name__)

AuthStateListener = Callable[[AuthEvent, Optional[AuthSession]], Awaitable[None]]

class Subscription:
    def __init__(self, service: "IdentityService", listener: AuthStateListener):
        self._service = service
        self._listener = listener

    def unsubscribe(self) -> None:
        self._service._remove_listener(self._listener)

class IdentityService:
    """
    Password-based identity provider client.

    Sessions are persisted through the shared key-value storage under the
    ``authTokens`` key; nothing else in the client writes raw tokens.
    """

    def __init__(
        self,
        supabase: SupabaseClient,
        storage: KeyValueStorage,
        expiry_margin_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.supabase = supabase
        self.storage = storage
        self.expiry_margin_seconds = expiry_margin_seconds
        self._clock = clock
        self._listeners: List[AuthStateListener] = []

    # Event subscription
    def on_auth_state_change(self, listener: AuthStateListener) -> Subscription:
        self._listeners.append(listener)
        return Subscription(self, listener)

    def _remove_listener(self, listener: AuthStateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event, session)
            except Exception as e:
                logger.error(f"Auth state listener failed on {event.value}: {e}")

    # Session persistence
    async def _load_session(self) -> Optional[AuthSession]:
        raw = await self.storage.get_item(AUTH_TOKENS_KEY)
        if not raw:
            return None
        try:
            return AuthSession.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Stored session is unreadable, discarding it: {e}")
            await self.storage.remove_item(AUTH_TOKENS_KEY)
            return None

    async def _save_session(self, session: AuthSession) -> None:
        await self.storage.set_item(AUTH_TOKENS_KEY, session.model_dump_json())

    async def _remove_session(self) -> None:
        await self.storage.remove_item(AUTH_TOKENS_KEY)

    async def set_session(self, session: AuthSession) -> None:
        """Commit a session obtained from sign-in or sign-up."""
        await self._save_session(session)
        await self._notify(AuthEvent.SIGNED_IN, session)

    # Provider calls
    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        """
        Exchange credentials for a session.

        The session is returned uncommitted; call ``set_session`` once the
        caller has accepted it.
        """
        payload = await self.supabase.auth_request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return self._parse_session(payload)

    async def sign_up(self, email: str, password: str, metadata: Optional[Dict[str, Any]] = None) -> SignUpResult:
        """
        Create an identity account. ``session`` is None when the provider
        requires the email address to be confirmed first.
        """
        payload = await self.supabase.auth_request(
            "POST",
            "/signup",
            json={"email": email, "password": password, "data": metadata or {}},
        )
        if not isinstance(payload, dict):
            raise ProviderError("Unexpected sign-up response from auth provider")
        if payload.get("access_token"):
            session = self._parse_session(payload)
            return SignUpResult(user=session.user, session=session)
        user_payload = payload.get("user") or payload
        try:
            user = IdentityUser.from_gotrue(user_payload)
        except (KeyError, ValidationError) as e:
            raise ProviderError("Unexpected sign-up response from auth provider") from e
        return SignUpResult(user=user)

    async def refresh_session(self, session: Optional[AuthSession] = None) -> AuthSession:
        if session is None:
            session = await self._load_session()
        if session is None:
            raise ProviderError("No session to refresh")
        payload = await self.supabase.auth_request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": session.refreshToken},
        )
        refreshed = self._parse_session(payload)
        await self._save_session(refreshed)
        await self._notify(AuthEvent.TOKEN_REFRESHED, refreshed)
        return refreshed

    async def get_session(self) -> Optional[AuthSession]:
        """
        Return the stored session, refreshing it when the access token has
        expired. A rejected refresh means the session was revoked.
        """
        session = await self._load_session()
        if session is None:
            return None
        if not is_session_expired(session, self.expiry_margin_seconds, self._clock()):
            return session

        logger.info("Access token expired, refreshing session")
        try:
            return await self.refresh_session(session)
        except NetworkError:
            logger.warning("Could not refresh session while offline")
            return None
        except ProviderError as e:
            current = await self._load_session()
            if current is not None and current.refreshToken != session.refreshToken:
                logger.info("Session was rotated while refreshing, keeping the newer one")
                return current
            logger.warning(f"Session refresh rejected, signing out locally: {e}")
            await self._remove_session()
            await self._notify(AuthEvent.SIGNED_OUT, None)
            return None

    async def get_user(self, access_token: str) -> IdentityUser:
        payload = await self.supabase.auth_request("GET", "/user", access_token=access_token)
        try:
            return IdentityUser.from_gotrue(payload)
        except (KeyError, TypeError, ValidationError) as e:
            raise ProviderError("Unexpected user response from auth provider") from e

    async def sign_out(self) -> None:
        """
        Revoke the session remotely, then always drop it locally.

        A network or provider failure is re-raised after local cleanup.
        """
        session = None
        try:
            session = await self._load_session()
            if session is not None:
                await self.supabase.auth_request("POST", "/logout", access_token=session.accessToken)
        finally:
            try:
                await self._remove_session()
            except StorageError as e:
                logger.error(f"Could not remove stored session: {e}")
            await self._notify(AuthEvent.SIGNED_OUT, None)

    def _parse_session(self, payload: Any) -> AuthSession:
        try:
            session = AuthSession.from_gotrue(payload)
        except (KeyError, TypeError, ValidationError) as e:
            raise ProviderError("Unexpected session response from auth provider") from e
        subject = get_token_subject(session.accessToken)
        if subject is not None and subject != session.user.id:
            raise ProviderError("Auth provider returned a token for a different user")
        if session.expiresAt is None and isinstance(payload, dict) and payload.get("expires_in"):
            session = session.model_copy(
                update={"expiresAt": int(self._clock()) + int(payload["expires_in"])}
            )
        return session
