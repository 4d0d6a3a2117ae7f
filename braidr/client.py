import logging
from typing import Optional

import httpx

from braidr.core.config import Settings, settings as default_settings
from braidr.core.supabase import SupabaseClient
from braidr.db.mongodb import Database, close_mongo_connection, connect_to_mongo, get_storage_collection
from braidr.db.session_store import SessionStore
from braidr.db.storage import FileStorage, KeyValueStorage, MemoryStorage, MongoStorage
from braidr.schemas.response import ApiResponse
from braidr.services.api_client import ApiClient
from braidr.services.auth_service import AuthManager
from braidr.services.booking_service import BookingService
from braidr.services.geocoder import NominatimGeocoder
from braidr.services.identity_service import IdentityService
from braidr.services.location_service import LocationService
from braidr.services.messaging_service import MessagingService
from braidr.services.position_source import PositionSource, StaticPositionSource
from braidr.services.profile_service import ProfileService

logger = logging.getLogger(__name__)

def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

class BraidrClient:
    """
    Wires storage, transports and services together from ``Settings``.

    Use as ``async with BraidrClient() as client:`` so the session is restored
    on entry and every connection is closed on exit.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        storage: Optional[KeyValueStorage] = None,
        position_source: Optional[PositionSource] = None,
        api_transport: Optional[httpx.AsyncBaseTransport] = None,
        supabase_transport: Optional[httpx.AsyncBaseTransport] = None,
        geocoder_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or default_settings
        self._database = Database()
        self._storage = storage
        self._position_source = position_source or StaticPositionSource(
            self.settings.DEVICE_LATITUDE, self.settings.DEVICE_LONGITUDE
        )
        self._api_transport = api_transport
        self._supabase_transport = supabase_transport
        self._geocoder_transport = geocoder_transport

        self.storage: Optional[KeyValueStorage] = None
        self.api: Optional[ApiClient] = None
        self.supabase: Optional[SupabaseClient] = None
        self.identity: Optional[IdentityService] = None
        self.profiles: Optional[ProfileService] = None
        self.session_store: Optional[SessionStore] = None
        self.auth: Optional[AuthManager] = None
        self.geocoder: Optional[NominatimGeocoder] = None
        self.location: Optional[LocationService] = None
        self.bookings: Optional[BookingService] = None
        self.messaging: Optional[MessagingService] = None

    async def _build_storage(self) -> KeyValueStorage:
        if self._storage is not None:
            return self._storage
        backend = self.settings.STORAGE_BACKEND.lower()
        if backend == "memory":
            return MemoryStorage()
        if backend == "mongo":
            await connect_to_mongo(self._database, self.settings)
            return MongoStorage(get_storage_collection(self._database, self.settings))
        if backend == "file":
            return FileStorage(self.settings.STORAGE_PATH)
        raise ValueError(f"Unknown storage backend: {self.settings.STORAGE_BACKEND}")

    async def start(self) -> ApiResponse:
        """
        Build every component and restore the previous session. Anything
        already opened is closed again if a later step fails.
        """
        configure_logging(self.settings.LOG_LEVEL)
        try:
            return await self._start()
        except BaseException:
            await self.close()
            raise

    async def _start(self) -> ApiResponse:
        s = self.settings
        self.storage = await self._build_storage()
        self.api = ApiClient(s.api_base_url, self.storage, s.HTTP_TIMEOUT_SECONDS, self._api_transport)
        self.supabase = SupabaseClient(s.SUPABASE_URL, s.SUPABASE_KEY, s.HTTP_TIMEOUT_SECONDS, self._supabase_transport)
        self.identity = IdentityService(self.supabase, self.storage, s.SESSION_EXPIRY_MARGIN_SECONDS)
        self.profiles = ProfileService(self.supabase)
        self.session_store = SessionStore(self.storage)
        self.auth = AuthManager(self.identity, self.profiles, self.session_store)
        self.geocoder = NominatimGeocoder(
            s.NOMINATIM_BASE_URL,
            s.NOMINATIM_USER_AGENT,
            s.HTTP_TIMEOUT_SECONDS,
            self._geocoder_transport,
        )
        self.location = LocationService(self.storage, self._position_source, self.geocoder, s)
        self.bookings = BookingService(self.api, self.storage, self.location)
        self.messaging = MessagingService(self.api)

        logger.info(f"Starting {s.APP_NAME} client ({s.APP_ENV}) against {s.api_base_url}")
        return await self.auth.initialize()

    async def close(self) -> None:
        """Close whatever has been opened; safe to call more than once."""
        if self.location is not None:
            self.location.stop_location_watch()
        if self.auth is not None:
            await self.auth.shutdown()
        for http_client in (self.api, self.supabase, self.geocoder):
            if http_client is not None:
                await http_client.aclose()
        if self.storage is not None:
            await self.storage.close()
        await close_mongo_connection(self._database)

        self.storage = self.api = self.supabase = self.geocoder = None
        self.identity = self.profiles = self.session_store = self.auth = None
        self.location = self.bookings = self.messaging = None
        logger.info("Client closed")

    async def __aenter__(self) -> "BraidrClient":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
