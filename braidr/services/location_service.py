import asyncio
import inspect
import json
import logging
import math
import random
import time
from typing import Any, Callable, Optional

from pydantic import ValidationError

from braidr.core.config import Settings, settings as default_settings
from braidr.core.exceptions import BraidrError, StorageError
from braidr.db.storage import KeyValueStorage, LAST_LOCATION_KEY
from braidr.schemas.location import (
    AddressComponents,
    LocationCoordinates,
    LocationResult,
    PermissionStatus,
)
from braidr.services.geocoder import NominatimGeocoder
from braidr.services.position_source import PositionSource
from braidr.utils.formatting import format_miles
from braidr.utils.geo import (
    MILES_PER_DEGREE_LATITUDE,
    calculate_distance,
    is_valid_coordinates,
    to_radians,
)

logger = logging.getLogger(__name__)

LocationCallback = Callable[[LocationResult], Any]

class LocationService:
    """
    Current-location lookup with graceful degradation.

    ``get_current_location`` tries, in order: the in-memory fix if still
    fresh, the position source, the last stored fix if under a day old, and
    finally a fixed default city. It never raises.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        position_source: PositionSource,
        geocoder: Optional[NominatimGeocoder] = None,
        settings: Settings = default_settings,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.position_source = position_source
        self.geocoder = geocoder
        self.settings = settings
        self._clock = clock
        self._last_known_location: Optional[LocationResult] = None
        self._watch_task: Optional[asyncio.Task] = None

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _age_seconds(self, location: LocationResult) -> float:
        return (self._now_ms() - location.timestamp) / 1000

    # Permission Management
    async def request_location_permission(self) -> PermissionStatus:
        try:
            return await self.position_source.request_permission()
        except Exception as e:
            logger.error(f"Location permission error: {e}")
            return PermissionStatus(granted=False, canAskAgain=False, status="error")

    async def check_location_permission(self) -> PermissionStatus:
        try:
            return await self.position_source.check_permission()
        except Exception as e:
            logger.error(f"Check location permission error: {e}")
            return PermissionStatus(granted=False, canAskAgain=False, status="error")

    # Location Retrieval
    async def get_current_location(self, use_cache: bool = True) -> Optional[LocationResult]:
        try:
            if use_cache and self._last_known_location is not None:
                if self._age_seconds(self._last_known_location) <= self.settings.LOCATION_CACHE_MAX_AGE_SECONDS:
                    return self._last_known_location

            permission = await self.check_location_permission()
            if not permission.granted:
                permission = await self.request_location_permission()
                if not permission.granted:
                    return await self._get_default_location()

            position = await self.position_source.get_current_position()
            result = LocationResult(
                coordinates=LocationCoordinates(latitude=position.latitude, longitude=position.longitude),
                timestamp=self._now_ms(),
            )
            self._last_known_location = result
            await self._save_location_to_storage(result)
            return result
        except Exception as e:
            logger.error(f"Get current location error: {e}")
            return await self._get_default_location()

    async def get_location_with_address(self) -> Optional[LocationResult]:
        location = await self.get_current_location()
        if location is None:
            return None
        address = await self.reverse_geocode(
            location.coordinates.latitude, location.coordinates.longitude
        )
        return location.model_copy(update={"address": address or location.address})

    # Address Services
    async def reverse_geocode(self, latitude: float, longitude: float) -> Optional[AddressComponents]:
        if self.geocoder is None:
            return None
        try:
            return await self.geocoder.reverse(latitude, longitude)
        except BraidrError as e:
            logger.error(f"Reverse geocode error: {e}")
            return None

    async def geocode_address(self, address: str) -> Optional[LocationCoordinates]:
        if self.geocoder is None:
            return None
        try:
            return await self.geocoder.search(address)
        except BraidrError as e:
            logger.error(f"Geocode address error: {e}")
            return None

    # Location Watching
    async def start_location_watch(self, callback: LocationCallback, interval_seconds: float = 30.0) -> bool:
        permission = await self.check_location_permission()
        if not permission.granted:
            return False
        self.stop_location_watch()
        self._watch_task = asyncio.create_task(self._watch(callback, interval_seconds))
        return True

    async def _watch(self, callback: LocationCallback, interval_seconds: float) -> None:
        while True:
            try:
                position = await self.position_source.get_current_position()
                result = LocationResult(coordinates=position, timestamp=self._now_ms())
                self._last_known_location = result
                outcome = callback(result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error(f"Location watch error: {e}")
            await asyncio.sleep(interval_seconds)

    def stop_location_watch(self) -> None:
        if self._watch_task is not None:
            self._watch_task.cancel()
            self._watch_task = None

    # Distance Calculations
    def calculate_distance(self, lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        return calculate_distance(lat1, lon1, lat2, lon2)

    def format_distance(self, miles: float) -> str:
        if miles < 0.1:
            return "Nearby"
        return format_miles(miles)

    # Storage Management
    async def _save_location_to_storage(self, location: LocationResult) -> None:
        try:
            await self.storage.set_item(LAST_LOCATION_KEY, location.model_dump_json())
        except StorageError as e:
            logger.error(f"Save location to storage error: {e}")

    async def get_stored_location(self) -> Optional[LocationResult]:
        """
        Last saved fix, only if it is younger than the stored-location window
        """
        try:
            stored = await self.storage.get_item(LAST_LOCATION_KEY)
            if not stored:
                return None
            location = LocationResult.model_validate(json.loads(stored))
        except (StorageError, ValueError, ValidationError) as e:
            logger.error(f"Get stored location error: {e}")
            return None
        if self._age_seconds(location) <= self.settings.STORED_LOCATION_MAX_AGE_SECONDS:
            self._last_known_location = location
            return location
        return None

    async def _get_default_location(self) -> LocationResult:
        stored = await self.get_stored_location()
        if stored is not None:
            return stored
        return LocationResult(
            coordinates=LocationCoordinates(
                latitude=self.settings.DEFAULT_LATITUDE,
                longitude=self.settings.DEFAULT_LONGITUDE,
            ),
            address=AddressComponents(
                city=self.settings.DEFAULT_CITY,
                state=self.settings.DEFAULT_STATE,
                country=self.settings.DEFAULT_COUNTRY,
            ),
            timestamp=self._now_ms(),
        )

    # Utility Functions
    def is_location_stale(self, location: LocationResult, max_age_minutes: float = 30) -> bool:
        return self._age_seconds(location) > max_age_minutes * 60

    def is_valid_coordinates(self, lat: float, lon: float) -> bool:
        return is_valid_coordinates(lat, lon)

    def get_location_display_name(self, address: Optional[AddressComponents] = None) -> str:
        if address is None:
            return "Unknown location"
        if address.city and address.state:
            return f"{address.city}, {address.state}"
        return address.city or address.state or "Unknown location"

    # Privacy Functions
    def get_approximate_location(
        self,
        coordinates: LocationCoordinates,
        radius_miles: float = 1,
        rng: Optional[random.Random] = None,
    ) -> LocationCoordinates:
        """Jitter a position by up to half of ``radius_miles`` on each axis."""
        rng = rng or random
        offset_lat = (rng.random() - 0.5) * (radius_miles / MILES_PER_DEGREE_LATITUDE)
        offset_lon = (rng.random() - 0.5) * (
            radius_miles / (MILES_PER_DEGREE_LATITUDE * math.cos(to_radians(coordinates.latitude)))
        )
        return LocationCoordinates(
            latitude=coordinates.latitude + offset_lat,
            longitude=coordinates.longitude + offset_lon,
        )
