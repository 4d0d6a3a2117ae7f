import json
import logging
from typing import Any, Dict, Optional

import httpx

from braidr.core.exceptions import NETWORK_ERROR_MESSAGE, StorageError
from braidr.db.storage import KeyValueStorage, AUTH_TOKENS_KEY
from braidr.schemas.response import ApiResponse, DEFAULT_ERROR_MESSAGE

logger = logging.getLogger(__name__)

def _clean_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop unset values; lists become repeated query keys."""
    if not params:
        return {}
    cleaned = {}
    for key, value in params.items():
        if value is None:
            continue
        if hasattr(value, "value"):  # Enum
            value = value.value
        cleaned[key] = value
    return cleaned

class ApiClient:
    """JSON client for the booking REST API."""

    def __init__(
        self,
        base_url: str,
        storage: KeyValueStorage,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.storage = storage
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    async def _get_auth_token(self) -> Optional[str]:
        try:
            tokens = await self.storage.get_item(AUTH_TOKENS_KEY)
            if tokens:
                return json.loads(tokens).get("accessToken")
        except (StorageError, ValueError, AttributeError) as e:
            logger.error(f"Error getting auth token: {e}")
        return None

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> ApiResponse:
        """
        Issue a request and normalize the result into an envelope.

        Never raises: HTTP errors and transport failures both come back as
        ``success=False`` with an ``error`` message.
        """
        headers = {"Content-Type": "application/json"}
        token = await self._get_auth_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._client.request(
                method,
                endpoint,
                json=body,
                params=_clean_params(params),
                headers=headers,
            )
        except httpx.HTTPError as e:
            logger.error(f"API request error: {method} {endpoint}: {e}")
            return ApiResponse.fail(NETWORK_ERROR_MESSAGE)

        try:
            data = response.json() if response.content else None
        except ValueError:
            data = None

        if not response.is_success:
            error = data.get("message") if isinstance(data, dict) else None
            logger.warning(f"API {method} {endpoint} returned {response.status_code}: {error}")
            return ApiResponse.fail(error or DEFAULT_ERROR_MESSAGE)

        if isinstance(data, dict):
            payload = data["data"] if data.get("data") is not None else data
            return ApiResponse.ok(payload, message=data.get("message"))
        return ApiResponse.ok(data)

    # Authentication endpoints
    async def login(self, email: str, password: str) -> ApiResponse:
        return await self.request("/auth/login", "POST", {"email": email, "password": password})

    async def register(self, user_data: Dict[str, Any]) -> ApiResponse:
        return await self.request("/auth/register", "POST", user_data)

    async def refresh_token(self, refresh_token: str) -> ApiResponse:
        return await self.request("/auth/refresh-token", "POST", {"refreshToken": refresh_token})

    async def logout(self) -> ApiResponse:
        return await self.request("/auth/logout", "POST")

    async def get_profile(self) -> ApiResponse:
        return await self.request("/auth/profile")

    async def update_profile(self, profile_data: Dict[str, Any]) -> ApiResponse:
        return await self.request("/auth/profile", "PUT", profile_data)

    # Stylist endpoints
    async def get_stylists(self, params: Optional[Dict[str, Any]] = None) -> ApiResponse:
        return await self.request("/stylists", params=params)

    async def get_stylist_by_id(self, stylist_id: str) -> ApiResponse:
        return await self.request(f"/stylists/{stylist_id}")

    # Service endpoints
    async def get_services_by_stylist(self, stylist_id: str) -> ApiResponse:
        return await self.request(f"/services/stylist/{stylist_id}")

    # Appointment endpoints
    async def create_appointment(self, appointment_data: Dict[str, Any]) -> ApiResponse:
        return await self.request("/appointments", "POST", appointment_data)

    async def get_appointments(self, params: Optional[Dict[str, Any]] = None) -> ApiResponse:
        return await self.request("/appointments", params=params)

    async def update_appointment_status(
        self, appointment_id: str, status: str, extra: Optional[Dict[str, Any]] = None
    ) -> ApiResponse:
        body = {"status": status}
        if extra:
            body.update(extra)
        return await self.request(f"/appointments/{appointment_id}/status", "PUT", body)

    # Messaging endpoints
    async def get_messages(self, conversation_id: str) -> ApiResponse:
        return await self.request(f"/messages/{conversation_id}")

    async def send_message(self, message_data: Dict[str, Any]) -> ApiResponse:
        return await self.request("/messages", "POST", message_data)

    async def aclose(self) -> None:
        await self._client.aclose()
