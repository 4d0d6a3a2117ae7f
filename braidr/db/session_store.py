import json
import logging
from typing import Optional

from pydantic import ValidationError

from braidr.db.storage import KeyValueStorage, USER_KEY, NEEDS_ONBOARDING_KEY
from braidr.schemas.user import AuthenticatedUser

logger = logging.getLogger(__name__)

class SessionStore:
    """
    Local cache of the signed-in user and the onboarding flag.

    Never the source of truth: whatever ``load`` returns may be stale and
    must be revalidated against the identity provider.
    """

    def __init__(self, storage: KeyValueStorage):
        self.storage = storage

    async def save(self, user: AuthenticatedUser) -> None:
        # Tokens are persisted by the identity provider only
        payload = user.model_dump(mode="json", exclude={"session"})
        await self.storage.set_item(USER_KEY, json.dumps(payload, sort_keys=True))

    async def load(self) -> Optional[AuthenticatedUser]:
        raw = await self.storage.get_item(USER_KEY)
        if not raw:
            return None
        try:
            return AuthenticatedUser.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning(f"Discarding unreadable cached user: {e}")
            await self.storage.remove_item(USER_KEY)
            return None

    async def clear(self) -> None:
        await self.storage.multi_remove([USER_KEY, NEEDS_ONBOARDING_KEY])

    async def set_needs_onboarding(self, needs_onboarding: bool) -> None:
        if needs_onboarding:
            await self.storage.set_item(NEEDS_ONBOARDING_KEY, "true")
        else:
            await self.storage.remove_item(NEEDS_ONBOARDING_KEY)

    async def needs_onboarding(self) -> bool:
        return await self.storage.get_item(NEEDS_ONBOARDING_KEY) == "true"
