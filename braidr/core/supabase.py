import logging
from typing import Any, Dict, Optional

import httpx

from braidr.core.exceptions import NetworkError, ProviderError

logger = logging.getLogger(__name__)

def _error_message(payload: Any, fallback: str) -> str:
    if isinstance(payload, dict):
        for key in ("msg", "error_description", "message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback

class SupabaseClient:
    """Thin async transport for the hosted auth (GoTrue) and table (PostgREST) APIs."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self._client = httpx.AsyncClient(base_url=self.url, timeout=timeout, transport=transport)

    def _headers(self, access_token: Optional[str] = None, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Content-Type": "application/json",
            "Authorization": f"Bearer {access_token or self.anon_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _send(
        self,
        method: str,
        path: str,
        access_token: Optional[str] = None,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                params=params,
                headers=self._headers(access_token, headers),
            )
        except httpx.HTTPError as e:
            logger.error(f"Auth provider request {method} {path} failed: {e}")
            raise NetworkError() from e

        try:
            payload = response.json() if response.content else None
        except ValueError:
            payload = None

        if response.status_code >= 400:
            message = _error_message(payload, f"Request failed with status {response.status_code}")
            logger.warning(f"Auth provider error {response.status_code} on {method} {path}: {message}")
            raise ProviderError(message, status_code=response.status_code)

        return payload

    async def auth_request(self, method: str, path: str, **kwargs: Any) -> Any:
        return await self._send(method, f"/auth/v1{path}", **kwargs)

    async def rest_request(self, method: str, table: str, **kwargs: Any) -> Any:
        return await self._send(method, f"/rest/v1/{table}", **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()
