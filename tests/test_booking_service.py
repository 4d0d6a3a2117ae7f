import json

import httpx
import pytest
from pydantic import ValidationError

from braidr.core.exceptions import NETWORK_ERROR_MESSAGE
from braidr.db.storage import AUTH_TOKENS_KEY, MemoryStorage
from braidr.schemas.booking import (
    Appointment,
    AppointmentStatus,
    BookingLocation,
    BookingRequest,
    CancelledBy,
)
from braidr.schemas.stylist import SearchFilters, SortBy
from braidr.services.api_client import ApiClient
from braidr.services.booking_service import BookingService

API_BASE_URL = "http://api.test/api"

# Test data
test_booking = BookingRequest(
    stylistId="st-bk",
    serviceId="svc-1",
    appointmentDate="2026-11-02",
    startTime="10:00",
    location=BookingLocation(address="12 Fulton St", city="Brooklyn", state="NY", zipCode="11201"),
    contactNumber="+15555550100",
    addOns=["ad-1"],
    specialRequests="Please bring extra hair",
)

async def sign_in_locally(storage):
    await storage.set_item(AUTH_TOKENS_KEY, json.dumps({"accessToken": "customer-token"}))

@pytest.fixture
def bookings(api_client, storage):
    return BookingService(api_client, storage)

@pytest.mark.asyncio
async def test_search_preserves_server_order_and_adds_distance(bookings, api_app):
    filters = SearchFilters(latitude=40.71, longitude=-74.00, radius=10, sortBy=SortBy.DISTANCE)

    result = await bookings.search_stylists(filters)

    assert result.success, result.error
    assert [stylist.id for stylist in result.data] == ["st-jc", "st-bk", "st-hl"]
    for stylist in result.data:
        assert stylist.distance is not None
        assert stylist.distance.endswith(" mi")
    assert result.pagination.total == 3

    query = dict(api_app.state.last_query)
    assert query["sortBy"] == "distance"
    assert query["latitude"] == "40.71"
    assert query["radius"] == "10.0"

@pytest.mark.asyncio
async def test_search_without_center_leaves_distance_unset(bookings):
    result = await bookings.search_stylists(SearchFilters(specialties=["knotless"]))

    assert result.success
    assert all(stylist.distance is None for stylist in result.data)

@pytest.mark.asyncio
async def test_search_accepts_bare_list():
    stylist = {"id": "st-1", "businessName": "Solo Braids", "rating": 4.2}
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"data": [stylist]}))
    storage = MemoryStorage()
    api = ApiClient(API_BASE_URL, storage, transport=transport)
    service = BookingService(api, storage)

    result = await service.search_stylists()

    assert result.success
    assert [s.id for s in result.data] == ["st-1"]
    assert result.pagination is None
    await api.aclose()

@pytest.mark.asyncio
async def test_search_with_empty_results(bookings, api_app):
    api_app.state.stylists = []

    result = await bookings.search_stylists(SearchFilters(latitude=40.71, longitude=-74.0))

    assert result.success
    assert result.data == []

@pytest.mark.asyncio
async def test_search_offline_returns_network_error(bookings, api_client):
    api_client.test_transport.offline = True

    result = await bookings.search_stylists(SearchFilters(latitude=40.71, longitude=-74.0))

    assert not result.success
    assert result.error == NETWORK_ERROR_MESSAGE

@pytest.mark.asyncio
async def test_search_with_malformed_stylists_fails_cleanly(bookings, api_app):
    api_app.state.stylists = [{"businessName": "No id"}]

    result = await bookings.search_stylists()

    assert not result.success
    assert "unexpected response" in result.error

@pytest.mark.asyncio
async def test_stylist_details_and_services(bookings):
    details = await bookings.get_stylist_details("st-bk")
    services = await bookings.get_stylist_services("st-bk")
    missing = await bookings.get_stylist_details("nope")

    assert details.success
    assert details.data.businessName == "Brooklyn Braids"
    assert details.data.location.coordinates.latitude == pytest.approx(40.6782)
    assert services.success
    assert services.data[0].addOns[0].price == 15
    assert not missing.success
    assert missing.error == "Stylist not found"

@pytest.mark.asyncio
async def test_create_booking_requires_sign_in(bookings):
    result = await bookings.create_booking(test_booking)

    assert not result.success
    assert result.error == "Authentication required"

@pytest.mark.asyncio
async def test_create_booking(bookings, storage, api_app):
    await sign_in_locally(storage)

    result = await bookings.create_booking(test_booking)

    assert result.success, result.error
    appointment = result.data
    assert appointment.status == AppointmentStatus.PENDING
    assert appointment.stylistId == "st-bk"
    assert appointment.location.city == "Brooklyn"
    assert result.message == "Appointment created"
    assert api_app.state.last_auth == "Bearer customer-token"

@pytest.mark.asyncio
async def test_double_booking_is_rejected_by_server(bookings, storage):
    await sign_in_locally(storage)
    await bookings.create_booking(test_booking)

    result = await bookings.create_booking(test_booking)

    assert not result.success
    assert result.error == "This time slot is no longer available"

@pytest.mark.asyncio
async def test_get_my_bookings_filters_by_status(bookings, storage, api_app):
    await sign_in_locally(storage)
    first = (await bookings.create_booking(test_booking)).data
    second = (await bookings.create_booking(test_booking.model_copy(update={"startTime": "15:00"}))).data
    await bookings.update_booking_status(second.id, AppointmentStatus.CONFIRMED)

    everything = await bookings.get_my_bookings()
    confirmed = await bookings.get_my_bookings(AppointmentStatus.CONFIRMED)
    pending = await bookings.get_my_bookings("pending")

    assert [a.id for a in everything.data] == [first.id, second.id]
    assert [a.id for a in confirmed.data] == [second.id]
    assert [a.id for a in pending.data] == [first.id]
    assert ("status", "pending") in api_app.state.last_query

@pytest.mark.asyncio
async def test_get_my_bookings_rejects_unknown_status(bookings):
    result = await bookings.get_my_bookings("rescheduled")

    assert not result.success
    assert "rescheduled" in result.error

@pytest.mark.asyncio
async def test_update_booking_status(bookings, storage):
    await sign_in_locally(storage)
    appointment = (await bookings.create_booking(test_booking)).data

    result = await bookings.update_booking_status(appointment.id, "confirmed")
    invalid = await bookings.update_booking_status(appointment.id, "done")
    missing = await bookings.update_booking_status("apt-999", AppointmentStatus.COMPLETED)

    assert result.success
    assert result.data.status == AppointmentStatus.CONFIRMED
    assert not invalid.success
    assert missing.error == "Appointment not found"

@pytest.mark.asyncio
async def test_cancel_booking_records_party_and_reason(bookings, storage):
    await sign_in_locally(storage)
    appointment = (await bookings.create_booking(test_booking)).data

    result = await bookings.cancel_booking(appointment.id, "Running late")

    assert result.success
    assert result.data.status == AppointmentStatus.CANCELLED
    assert result.data.cancelledBy == CancelledBy.CUSTOMER
    assert result.data.cancellationReason == "Running late"

@pytest.mark.asyncio
async def test_cancel_booking_requires_reason(bookings, storage, api_app):
    await sign_in_locally(storage)
    appointment = (await bookings.create_booking(test_booking)).data

    blank = await bookings.cancel_booking(appointment.id, "   ")
    via_status = await bookings.update_booking_status(appointment.id, AppointmentStatus.CANCELLED)
    unknown_party = await bookings.cancel_booking(appointment.id, "Sick", "salon")

    assert blank.error == "A cancellation reason is required"
    assert not via_status.success
    assert "cancel_booking" in via_status.error
    assert not unknown_party.success
    assert api_app.state.appointments[appointment.id]["status"] == "pending"

def test_cancellation_fields_present_exactly_when_cancelled():
    payload = {
        "id": "apt-1",
        "customerId": "c",
        "stylistId": "s",
        "serviceId": "svc",
        "appointmentDate": "2026-11-02",
        "startTime": "10:00",
        "status": "confirmed",
        "location": {"address": "1 Main St"},
        "contactNumber": "+15555550100",
        "totalPrice": 100,
        "cancelledBy": "customer",
    }
    with pytest.raises(ValidationError):
        Appointment.model_validate(payload)

    payload["status"] = "cancelled"
    with pytest.raises(ValidationError):
        Appointment.model_validate(payload)

    payload["cancellationReason"] = "Running late"
    assert Appointment.model_validate(payload).cancelledBy == CancelledBy.CUSTOMER

    del payload["cancelledBy"]
    with pytest.raises(ValidationError):
        Appointment.model_validate(payload)

@pytest.mark.asyncio
async def test_favorites_round_trip(bookings):
    assert (await bookings.get_favorite_stylists()).data == []

    await bookings.add_favorite_stylist("st-bk")
    await bookings.add_favorite_stylist("st-bk")
    added = await bookings.add_favorite_stylist("st-jc")

    assert added.data == ["st-bk", "st-jc"]
    assert (await bookings.is_favorite_stylist("st-bk")).data is True

    removed = await bookings.remove_favorite_stylist("st-bk")
    assert removed.data == ["st-jc"]
    assert (await bookings.is_favorite_stylist("st-bk")).data is False

@pytest.mark.asyncio
async def test_current_location_without_location_service(bookings):
    coords = await bookings.get_current_location()

    assert coords.latitude == pytest.approx(40.7128)
    assert coords.longitude == pytest.approx(-74.0060)

@pytest.fixture
def offline_bookings():
    storage = MemoryStorage()
    api = ApiClient(API_BASE_URL, storage, transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    return BookingService(api, storage, clock=lambda: 1_700_000_123.5)

def test_service_area_check(offline_bookings):
    # Brooklyn stylist, Manhattan customer, about 4 miles apart
    assert offline_bookings.is_within_service_area(40.6782, -73.9442, 40.7128, -74.0060, 15)
    assert not offline_bookings.is_within_service_area(40.6782, -73.9442, 40.7128, -74.0060, 2)

def test_booking_id_uses_last_six_clock_digits(offline_bookings):
    assert offline_bookings.generate_booking_id() == "BRD123500"

@pytest.mark.parametrize(
    "price,expected",
    [(45, "$45.00"), (180.5, "$180.50"), (0, "$0.00")],
)
def test_format_price(offline_bookings, price, expected):
    assert offline_bookings.format_price(price) == expected

@pytest.mark.parametrize(
    "minutes,expected",
    [(45, "45 min"), (60, "1 hr"), (90, "1h 30m"), (240, "4 hr")],
)
def test_format_duration(offline_bookings, minutes, expected):
    assert offline_bookings.format_duration(minutes) == expected

@pytest.mark.parametrize(
    "miles,expected",
    [(0.5, "2640 ft"), (2.345, "2.3 mi"), (12, "12.0 mi")],
)
def test_format_distance(offline_bookings, miles, expected):
    assert offline_bookings.format_distance(miles) == expected
