import logging
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from braidr.core.config import settings
from braidr.core.exceptions import StorageError
from braidr.db import favorites as favorites_db
from braidr.db.storage import KeyValueStorage
from braidr.schemas.booking import Appointment, AppointmentStatus, BookingRequest, CancelledBy
from braidr.schemas.location import LocationCoordinates
from braidr.schemas.response import ApiResponse, Pagination
from braidr.schemas.service import Service
from braidr.schemas.stylist import SearchFilters, Stylist
from braidr.services.api_client import ApiClient
from braidr.services.location_service import LocationService
from braidr.utils.formatting import format_duration, format_miles, format_price
from braidr.utils.geo import calculate_distance

logger = logging.getLogger(__name__)

INVALID_RESPONSE_MESSAGE = "Received an unexpected response from the server"

_stylists = TypeAdapter(List[Stylist])
_services = TypeAdapter(List[Service])
_appointments = TypeAdapter(List[Appointment])

class BookingService:
    """
    Stylist discovery, services, appointments and favorites.

    Every method returns an ``ApiResponse``; nothing raises. Sorting,
    pagination and double-booking checks are left to the server.
    """

    def __init__(
        self,
        api: ApiClient,
        storage: KeyValueStorage,
        location: Optional[LocationService] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.api = api
        self.storage = storage
        self.location = location
        self._clock = clock

    # Stylist Discovery
    async def search_stylists(self, filters: Optional[SearchFilters] = None) -> ApiResponse:
        filters = filters or SearchFilters()
        response = await self.api.get_stylists(filters.model_dump(exclude_none=True, mode="json"))
        if not response.success or response.data is None:
            return ApiResponse.fail(response.error or "Failed to search stylists")

        data = response.data
        if isinstance(data, dict):
            raw_stylists = data.get("stylists") or []
            raw_pagination = data.get("pagination")
        else:
            raw_stylists = data
            raw_pagination = None

        try:
            stylists = _stylists.validate_python(raw_stylists)
            pagination = Pagination.model_validate(raw_pagination) if raw_pagination else None
        except ValidationError as e:
            logger.error(f"Search stylists returned malformed data: {e}")
            return ApiResponse.fail(INVALID_RESPONSE_MESSAGE)

        if filters.has_center():
            stylists = [self._with_distance(stylist, filters.latitude, filters.longitude) for stylist in stylists]

        return ApiResponse.ok(stylists, pagination=pagination)

    def _with_distance(self, stylist: Stylist, latitude: float, longitude: float) -> Stylist:
        if stylist.distance or not stylist.location or not stylist.location.coordinates:
            return stylist
        coords = stylist.location.coordinates
        miles = calculate_distance(latitude, longitude, coords.latitude, coords.longitude)
        return stylist.model_copy(update={"distance": self.format_distance(miles)})

    async def get_stylist_details(self, stylist_id: str) -> ApiResponse:
        response = await self.api.get_stylist_by_id(stylist_id)
        if not response.success:
            return ApiResponse.fail(response.error or "Failed to get stylist details")
        try:
            return ApiResponse.ok(Stylist.model_validate(response.data))
        except ValidationError as e:
            logger.error(f"Stylist {stylist_id} returned malformed data: {e}")
            return ApiResponse.fail(INVALID_RESPONSE_MESSAGE)

    async def get_stylist_services(self, stylist_id: str) -> ApiResponse:
        response = await self.api.get_services_by_stylist(stylist_id)
        if not response.success:
            return ApiResponse.fail(response.error or "Failed to get services")
        try:
            return ApiResponse.ok(_services.validate_python(response.data or []))
        except ValidationError as e:
            logger.error(f"Services for stylist {stylist_id} were malformed: {e}")
            return ApiResponse.fail(INVALID_RESPONSE_MESSAGE)

    # Booking Management
    async def create_booking(self, booking: BookingRequest) -> ApiResponse:
        """
        Request an appointment. Slot conflicts are detected by the server.
        """
        response = await self.api.create_appointment(booking.model_dump(exclude_none=True, mode="json"))
        if not response.success:
            return ApiResponse.fail(response.error or "Failed to create booking")
        return self._appointment_response(response)

    async def get_my_bookings(self, status: Optional[AppointmentStatus] = None) -> ApiResponse:
        try:
            params: Dict[str, Any] = {"status": AppointmentStatus(status).value} if status else {}
        except ValueError:
            return ApiResponse.fail(f"Unknown booking status: {status}")
        response = await self.api.get_appointments(params)
        if not response.success:
            return ApiResponse.fail(response.error or "Failed to get bookings")
        data = response.data or []
        if isinstance(data, dict):
            data = data.get("appointments") or []
        try:
            return ApiResponse.ok(_appointments.validate_python(data))
        except ValidationError as e:
            logger.error(f"Bookings response was malformed: {e}")
            return ApiResponse.fail(INVALID_RESPONSE_MESSAGE)

    async def update_booking_status(self, appointment_id: str, status: AppointmentStatus) -> ApiResponse:
        """
        Move an appointment to ``status``; transition rules are enforced server-side.
        """
        try:
            status = AppointmentStatus(status)
        except ValueError:
            return ApiResponse.fail(f"Unknown booking status: {status}")
        if status == AppointmentStatus.CANCELLED:
            return ApiResponse.fail("Use cancel_booking to cancel an appointment")
        response = await self.api.update_appointment_status(appointment_id, status.value)
        if not response.success:
            return ApiResponse.fail(response.error or "Failed to update booking")
        return self._appointment_response(response)

    async def cancel_booking(
        self,
        appointment_id: str,
        reason: str,
        cancelled_by: CancelledBy = CancelledBy.CUSTOMER,
    ) -> ApiResponse:
        reason = (reason or "").strip()
        if not reason:
            return ApiResponse.fail("A cancellation reason is required")
        try:
            extra = {"cancelledBy": CancelledBy(cancelled_by).value, "cancellationReason": reason}
        except ValueError:
            return ApiResponse.fail(f"Unknown cancelling party: {cancelled_by}")
        response = await self.api.update_appointment_status(
            appointment_id, AppointmentStatus.CANCELLED.value, extra
        )
        if not response.success:
            return ApiResponse.fail(response.error or "Failed to cancel booking")
        return self._appointment_response(response)

    def _appointment_response(self, response: ApiResponse) -> ApiResponse:
        try:
            appointment = Appointment.model_validate(response.data)
        except ValidationError as e:
            logger.error(f"Appointment response was malformed: {e}")
            return ApiResponse.fail(INVALID_RESPONSE_MESSAGE)
        return ApiResponse.ok(appointment, message=response.message)

    # Location Services
    async def get_current_location(self) -> Optional[LocationCoordinates]:
        if self.location is None:
            return LocationCoordinates(latitude=settings.DEFAULT_LATITUDE, longitude=settings.DEFAULT_LONGITUDE)
        result = await self.location.get_current_location()
        return result.coordinates if result else None

    def calculate_distance(self, lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        return calculate_distance(lat1, lon1, lat2, lon2)

    def is_within_service_area(
        self,
        stylist_lat: float,
        stylist_lon: float,
        customer_lat: float,
        customer_lon: float,
        service_area_miles: float,
    ) -> bool:
        distance = calculate_distance(stylist_lat, stylist_lon, customer_lat, customer_lon)
        return distance <= service_area_miles

    # Favorites Management (device-local, not synced)
    async def get_favorite_stylists(self) -> ApiResponse:
        try:
            return ApiResponse.ok(await favorites_db.get_favorites(self.storage))
        except StorageError as e:
            logger.error(f"Get favorites error: {e}")
            return ApiResponse.fail("Failed to load favorites")

    async def add_favorite_stylist(self, stylist_id: str) -> ApiResponse:
        try:
            return ApiResponse.ok(await favorites_db.add_favorite(self.storage, stylist_id))
        except StorageError as e:
            logger.error(f"Add to favorites error: {e}")
            return ApiResponse.fail("Failed to add favorite")

    async def remove_favorite_stylist(self, stylist_id: str) -> ApiResponse:
        try:
            return ApiResponse.ok(await favorites_db.remove_favorite(self.storage, stylist_id))
        except StorageError as e:
            logger.error(f"Remove from favorites error: {e}")
            return ApiResponse.fail("Failed to remove favorite")

    async def is_favorite_stylist(self, stylist_id: str) -> ApiResponse:
        try:
            return ApiResponse.ok(await favorites_db.is_stylist_favorited(self.storage, stylist_id))
        except StorageError as e:
            logger.error(f"Check favorite error: {e}")
            return ApiResponse.fail("Failed to load favorites")

    # Utility Functions
    def generate_booking_id(self) -> str:
        return f"BRD{str(int(self._clock() * 1000))[-6:]}"

    def format_price(self, price: float) -> str:
        return format_price(price)

    def format_duration(self, minutes: int) -> str:
        return format_duration(minutes)

    def format_distance(self, miles: float) -> str:
        return format_miles(miles)
