from typing import Optional
import logging

from pydantic import ValidationError

from braidr.core.exceptions import ProviderError
from braidr.core.supabase import SupabaseClient
from braidr.schemas.user import ProfileCreate, ProfileRow, ProfileUpdate

logger = logging.getLogger(__name__)

USERS_TABLE = "users"
PROFILE_COLUMNS = "id,email,first_name,last_name,role,is_email_verified,avatar,phone"

class ProfileService:
    """Reads and writes rows of the ``users`` profile table."""

    def __init__(self, supabase: SupabaseClient):
        self.supabase = supabase

    def _first_row(self, rows) -> Optional[ProfileRow]:
        if isinstance(rows, dict):
            rows = [rows]
        if not rows:
            return None
        try:
            return ProfileRow.model_validate(rows[0])
        except ValidationError as e:
            logger.error(f"Malformed profile row: {e}")
            raise ProviderError("Profile data is invalid") from e

    async def get_profile(self, user_id: str, access_token: str) -> Optional[ProfileRow]:
        """
        Get a profile by identity user ID
        """
        rows = await self.supabase.rest_request(
            "GET",
            USERS_TABLE,
            access_token=access_token,
            params={"id": f"eq.{user_id}", "select": PROFILE_COLUMNS},
        )
        return self._first_row(rows)

    async def create_profile(self, profile_in: ProfileCreate, access_token: Optional[str] = None) -> ProfileRow:
        """
        Create the profile row for a new identity
        """
        rows = await self.supabase.rest_request(
            "POST",
            USERS_TABLE,
            access_token=access_token,
            json=profile_in.model_dump(mode="json", exclude_none=True),
            headers={"Prefer": "return=representation"},
        )
        profile = self._first_row(rows)
        if profile is None:
            raise ProviderError("Profile was not returned after insert")
        return profile

    async def update_profile(
        self, user_id: str, profile_update: ProfileUpdate, access_token: str
    ) -> Optional[ProfileRow]:
        """
        Update only the provided profile fields
        """
        update_data = profile_update.model_dump(exclude_unset=True)
        if not update_data:
            return await self.get_profile(user_id, access_token)

        rows = await self.supabase.rest_request(
            "PATCH",
            USERS_TABLE,
            access_token=access_token,
            params={"id": f"eq.{user_id}"},
            json=update_data,
            headers={"Prefer": "return=representation"},
        )
        return self._first_row(rows)
