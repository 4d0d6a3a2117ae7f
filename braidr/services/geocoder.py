import logging
from typing import Optional

import httpx

from braidr.core.exceptions import NetworkError, ProviderError
from braidr.schemas.location import AddressComponents, LocationCoordinates

logger = logging.getLogger(__name__)

class NominatimGeocoder:
    # Nominatim requires a User-Agent with contact info and a low request rate
    def __init__(
        self,
        base_url: str,
        user_agent: str,
        timeout: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"User-Agent": user_agent, "Accept": "application/json"},
        )

    async def _get(self, path: str, params: dict):
        try:
            resp = await self._client.get(path, params=params)
        except httpx.HTTPError as e:
            logger.error(f"Geocoding request failed: {e}")
            raise NetworkError() from e
        if resp.status_code >= 400:
            logger.warning(f"Nominatim error {resp.status_code}: {resp.text[:200]}")
            raise ProviderError("Geocoding provider error", status_code=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            logger.warning(f"Geocoding response is not JSON: {resp.text[:200]}")
            raise ProviderError("Geocoding provider returned an invalid response") from e

    async def reverse(self, latitude: float, longitude: float) -> Optional[AddressComponents]:
        raw = await self._get(
            "/reverse",
            {"lat": latitude, "lon": longitude, "format": "json", "addressdetails": 1},
        )
        address = raw.get("address") if isinstance(raw, dict) else None
        if not address:
            return None
        street = " ".join(
            part for part in (address.get("house_number"), address.get("road")) if part
        )
        return AddressComponents(
            street=street or None,
            city=address.get("city") or address.get("town") or address.get("village"),
            state=address.get("state"),
            zipCode=address.get("postcode"),
            country=(address.get("country_code") or "").upper() or address.get("country"),
        )

    async def search(self, query: str) -> Optional[LocationCoordinates]:
        query = (query or "").strip()
        if not query:
            return None
        raw = await self._get("/search", {"q": query, "format": "json", "limit": "1"})
        if not isinstance(raw, list) or not raw:
            return None
        item = raw[0]
        try:
            return LocationCoordinates(latitude=float(item["lat"]), longitude=float(item["lon"]))
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Geocoding result without coordinates for '{query}'")
            return None

    async def aclose(self) -> None:
        await self._client.aclose()
