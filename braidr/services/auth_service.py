import asyncio
import logging
from typing import Callable, List, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError

from braidr.core.exceptions import (
    BraidrError,
    ProfileNotFoundError,
    RoleMismatchError,
    SignUpIncompleteError,
    StorageError,
)
from braidr.db.session_store import SessionStore
from braidr.schemas.auth import AuthEvent, AuthSession, AuthState
from braidr.schemas.response import ApiResponse
from braidr.schemas.user import AuthenticatedUser, ProfileCreate, ProfileUpdate, SignUpRequest, UserRole
from braidr.services.identity_service import IdentityService, Subscription
from braidr.services.profile_service import ProfileService

logger = logging.getLogger(__name__)

class AuthSnapshot(BaseModel):
    """Read-only view of the auth state handed to the rest of the app."""
    state: AuthState
    user: Optional[AuthenticatedUser] = None
    isAuthenticated: bool = False
    isLoading: bool = False
    needsOnboarding: bool = False
    error: Optional[str] = None
    version: int = 0

    class Config:
        frozen = True

StateListener = Callable[[AuthSnapshot], None]

def _validation_message(error: ValidationError) -> str:
    details = []
    for err in error.errors():
        field = ".".join(str(part) for part in err.get("loc", ()))
        details.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return "Invalid sign-up details. " + "; ".join(details)

class AuthManager:
    """
    Single source of truth for who is signed in.

    All state changes run under one lock. Provider-pushed auth events are
    queued and applied one at a time by a worker task, each one reconciling
    against the provider's current session rather than the event payload,
    so a late event can never roll the state back to a stale user.

    Public operations return an ``ApiResponse`` and never raise.
    """

    def __init__(
        self,
        identity: IdentityService,
        profiles: ProfileService,
        session_store: SessionStore,
    ):
        self._identity = identity
        self._profiles = profiles
        self._session_store = session_store

        self._state = AuthState.UNINITIALIZED
        self._user: Optional[AuthenticatedUser] = None
        self._needs_onboarding = False
        self._is_loading = False
        self._error: Optional[str] = None
        self._version = 0

        self._lock = asyncio.Lock()
        self._events: "asyncio.Queue[Tuple[AuthEvent, Optional[AuthSession]]]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._subscription: Optional[Subscription] = None
        self._listeners: List[StateListener] = []

    # Reactive state
    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def user(self) -> Optional[AuthenticatedUser]:
        return self._user

    @property
    def is_authenticated(self) -> bool:
        return self._state == AuthState.AUTHENTICATED and self._user is not None

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def needs_onboarding(self) -> bool:
        return self._needs_onboarding

    @property
    def last_error(self) -> Optional[str]:
        return self._error

    @property
    def version(self) -> int:
        return self._version

    def snapshot(self) -> AuthSnapshot:
        return AuthSnapshot(
            state=self._state,
            user=self._user,
            isAuthenticated=self.is_authenticated,
            isLoading=self._is_loading,
            needsOnboarding=self._needs_onboarding,
            error=self._error,
            version=self._version,
        )

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        self._version += 1
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Auth state listener failed: {e}")

    def _set_authenticated(self, user: AuthenticatedUser, needs_onboarding: bool) -> None:
        self._state = AuthState.AUTHENTICATED
        self._user = user
        self._needs_onboarding = needs_onboarding

    def _set_unauthenticated(self) -> None:
        self._state = AuthState.UNAUTHENTICATED
        self._user = None
        self._needs_onboarding = False

    def _begin(self) -> None:
        self._is_loading = True
        self._error = None
        self._emit()

    def _failed(self, message: str) -> ApiResponse:
        self._error = message
        return ApiResponse.fail(message)

    async def _clear_local(self) -> None:
        try:
            await self._session_store.clear()
        except StorageError as e:
            logger.error(f"Could not clear local session: {e}")

    async def _cache_user(self, user: AuthenticatedUser, default_onboarding: bool) -> bool:
        """
        Write the user cache and read the onboarding flag. The cache is not
        the source of truth, so storage failures are logged only.
        """
        needs_onboarding = default_onboarding
        try:
            await self._session_store.save(user)
            needs_onboarding = await self._session_store.needs_onboarding()
        except StorageError as e:
            logger.error(f"Could not cache user {user.id}: {e}")
        return needs_onboarding

    # Session restoration
    async def _resolve_user(self) -> Optional[AuthenticatedUser]:
        session = await self._identity.get_session()
        if session is None:
            return None
        profile = await self._profiles.get_profile(session.user.id, session.accessToken)
        if profile is None:
            logger.warning(f"No profile for user {session.user.id}, treating session as signed out")
            return None
        return profile.to_user(session)

    async def _reconcile(self) -> Optional[str]:
        """
        Resolve the provider's current session into a user, fail-closed.
        Returns the error message when resolution failed.
        """
        error = None
        user = None
        try:
            user = await self._resolve_user()
        except BraidrError as e:
            logger.error(f"Error checking auth state: {e}")
            error = e.message

        if user is None:
            await self._clear_local()
            self._set_unauthenticated()
        else:
            needs_onboarding = await self._cache_user(user, default_onboarding=self._needs_onboarding)
            self._set_authenticated(user, needs_onboarding)

        self._error = error
        return error

    async def initialize(self) -> ApiResponse:
        """
        Restore any existing session and start listening for provider events.
        """
        if self._subscription is None:
            self._subscription = self._identity.on_auth_state_change(self._on_auth_event)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._process_events())

        async with self._lock:
            self._state = AuthState.LOADING
            self._begin()
            try:
                error = await self._reconcile()
            finally:
                self._is_loading = False
                self._emit()

        if error:
            return ApiResponse.fail(error)
        return ApiResponse.ok(self._user)

    async def _on_auth_event(self, event: AuthEvent, session: Optional[AuthSession]) -> None:
        logger.debug(f"Queued auth event {event.value}")
        self._events.put_nowait((event, session))

    async def _process_events(self) -> None:
        while True:
            event, session = await self._events.get()
            try:
                async with self._lock:
                    if self._is_refresh_of_current_user(event, session):
                        # Same user with new tokens, no need to go back to the network
                        self._user = self._user.model_copy(update={"session": session})
                    else:
                        await self._reconcile()
                    self._emit()
            except Exception as e:
                logger.error(f"Failed to apply auth event {event.value}: {e}")
            finally:
                self._events.task_done()

    def _is_refresh_of_current_user(self, event: AuthEvent, session: Optional[AuthSession]) -> bool:
        return (
            event == AuthEvent.TOKEN_REFRESHED
            and session is not None
            and self._user is not None
            and self._user.id == session.user.id
        )

    async def wait_for_events(self) -> None:
        """Block until every queued provider event has been applied."""
        await self._events.join()

    # Explicit operations
    async def sign_in(self, email: str, password: str, expected_role: Union[UserRole, str]) -> ApiResponse:
        """
        Sign in and enter the experience for ``expected_role``.

        Valid credentials for an account of a different role are rejected.
        On any failure the previous state and provider session are untouched.
        """
        try:
            expected_role = UserRole(expected_role)
        except ValueError:
            return self._failed(f"Unknown role: {expected_role}")

        async with self._lock:
            self._begin()
            try:
                session = await self._identity.sign_in_with_password(email, password)
                profile = await self._profiles.get_profile(session.user.id, session.accessToken)
                if profile is None:
                    raise ProfileNotFoundError(session.user.id)
                if profile.role != expected_role:
                    raise RoleMismatchError(expected_role.value, profile.role.value)

                # Committing the session is the last step that may fail
                await self._identity.set_session(session)
                user = profile.to_user(session)
                needs_onboarding = await self._cache_user(user, default_onboarding=False)
                self._set_authenticated(user, needs_onboarding)
                logger.info(f"Signed in user {user.id} as {user.role.value}")
                return ApiResponse.ok(user)
            except BraidrError as e:
                logger.warning(f"Sign in failed for {email}: {e}")
                return self._failed(e.message)
            finally:
                self._is_loading = False
                self._emit()

    async def sign_up(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        role: Union[UserRole, str],
        phone: Optional[str] = None,
    ) -> ApiResponse:
        """
        Create an identity account and its profile row.

        If the profile insert fails the identity account is left in place
        and the error says so.
        """
        try:
            request = SignUpRequest(
                firstName=first_name,
                lastName=last_name,
                email=email,
                password=password,
                role=role,
                phone=phone,
            )
        except ValidationError as e:
            return self._failed(_validation_message(e))

        async with self._lock:
            self._begin()
            try:
                result = await self._identity.sign_up(
                    request.email,
                    request.password,
                    {
                        "first_name": request.firstName,
                        "last_name": request.lastName,
                        "role": request.role.value,
                    },
                )
                access_token = result.session.accessToken if result.session else None
                try:
                    profile = await self._profiles.create_profile(
                        ProfileCreate(
                            id=result.user.id,
                            email=request.email,
                            first_name=request.firstName,
                            last_name=request.lastName,
                            role=request.role,
                            is_email_verified=False,
                            phone=request.phone,
                        ),
                        access_token,
                    )
                except BraidrError as e:
                    logger.error(f"Identity {result.user.id} created but profile insert failed: {e}")
                    raise SignUpIncompleteError(
                        f"Your account was created but your profile could not be saved ({e.message}). "
                        "Please try again or contact support."
                    ) from e

                try:
                    await self._session_store.set_needs_onboarding(True)
                except StorageError as e:
                    logger.error(f"Could not store onboarding flag for {result.user.id}: {e}")

                if result.session is None:
                    logger.info(f"User {result.user.id} must confirm their email before signing in")
                    return ApiResponse.ok(
                        profile.to_user(),
                        message="Check your email to confirm your account before signing in.",
                    )

                await self._identity.set_session(result.session)
                user = profile.to_user(result.session)
                await self._cache_user(user, default_onboarding=True)
                self._set_authenticated(user, True)
                logger.info(f"Signed up user {user.id} as {user.role.value}")
                return ApiResponse.ok(user, message="Account created")
            except BraidrError as e:
                logger.warning(f"Sign up failed for {email}: {e}")
                return self._failed(e.message)
            finally:
                self._is_loading = False
                self._emit()

    async def sign_out(self) -> ApiResponse:
        """
        Sign out. The provider call is best-effort; local state is always
        cleared.
        """
        async with self._lock:
            try:
                await self._identity.sign_out()
            except BraidrError as e:
                logger.warning(f"Provider sign out failed, clearing local session anyway: {e}")
            finally:
                await self._clear_local()
                self._set_unauthenticated()
                self._error = None
                self._emit()
        return ApiResponse.ok(None, message="Signed out")

    async def complete_onboarding(self) -> ApiResponse:
        async with self._lock:
            try:
                await self._session_store.set_needs_onboarding(False)
            except StorageError as e:
                logger.error(f"Complete onboarding error: {e}")
                return self._failed(e.message)
            self._needs_onboarding = False
            self._emit()
        return ApiResponse.ok(None)

    async def refresh_profile(self) -> ApiResponse:
        """
        Re-fetch the profile and replace the cached user. No-op when signed out.
        """
        async with self._lock:
            if not self.is_authenticated:
                return ApiResponse.ok(None)
            try:
                session = await self._identity.get_session()
                if session is None:
                    return ApiResponse.ok(None)
                profile = await self._profiles.get_profile(session.user.id, session.accessToken)
                if profile is None:
                    raise ProfileNotFoundError(session.user.id)
                user = profile.to_user(session)
                await self._session_store.save(user)
                self._user = user
                self._error = None
                self._emit()
                return ApiResponse.ok(user)
            except BraidrError as e:
                logger.warning(f"Refresh profile failed: {e}")
                return self._failed(e.message)

    async def update_profile(self, profile_update: ProfileUpdate) -> ApiResponse:
        async with self._lock:
            if not self.is_authenticated:
                return self._failed("You must be signed in to update your profile")
            try:
                session = await self._identity.get_session()
                if session is None:
                    return self._failed("Your session has expired. Please sign in again.")
                profile = await self._profiles.update_profile(
                    session.user.id, profile_update, session.accessToken
                )
                if profile is None:
                    raise ProfileNotFoundError(session.user.id)
                user = profile.to_user(session)
                await self._session_store.save(user)
                self._user = user
                self._error = None
                self._emit()
                return ApiResponse.ok(user)
            except BraidrError as e:
                logger.warning(f"Update profile failed: {e}")
                return self._failed(e.message)

    async def shutdown(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
