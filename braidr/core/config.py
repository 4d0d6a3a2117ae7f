from pydantic_settings import BaseSettings
from typing import Optional
import os
from dotenv import load_dotenv

load_dotenv()

def _optional_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    return float(value) if value else None

class Settings(BaseSettings):
    # App Settings
    APP_NAME: str = os.getenv("APP_NAME", "Braidr")
    APP_ENV: str = os.getenv("APP_ENV", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # REST API (booking/search domain)
    API_BASE_URL_DEV: str = os.getenv("API_BASE_URL_DEV", "http://localhost:3000/api")
    API_BASE_URL_PROD: str = os.getenv("API_BASE_URL_PROD", "https://api.braidr.app/api")
    HTTP_TIMEOUT_SECONDS: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

    # Hosted auth / database
    SUPABASE_URL: str = os.getenv("SUPABASE_URL", "http://localhost:54321")
    SUPABASE_KEY: str = os.getenv("SUPABASE_KEY", "")
    SESSION_EXPIRY_MARGIN_SECONDS: int = int(os.getenv("SESSION_EXPIRY_MARGIN_SECONDS", "60"))

    # Local storage
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "file")  # memory | file | mongo
    STORAGE_PATH: str = os.getenv("STORAGE_PATH", os.path.join(os.path.expanduser("~"), ".braidr", "storage.json"))
    MONGO_URI: str = os.getenv("MONGO_URI", "mongodb://localhost:27017")
    DB_NAME: str = os.getenv("DB_NAME", "braidr_client")
    STORAGE_COLLECTION: str = os.getenv("STORAGE_COLLECTION", "storage")

    # Location
    LOCATION_CACHE_MAX_AGE_SECONDS: int = int(os.getenv("LOCATION_CACHE_MAX_AGE_SECONDS", "300"))
    STORED_LOCATION_MAX_AGE_SECONDS: int = int(os.getenv("STORED_LOCATION_MAX_AGE_SECONDS", "86400"))
    DEFAULT_LATITUDE: float = float(os.getenv("DEFAULT_LATITUDE", "40.7128"))
    DEFAULT_LONGITUDE: float = float(os.getenv("DEFAULT_LONGITUDE", "-74.0060"))
    DEFAULT_CITY: str = os.getenv("DEFAULT_CITY", "New York")
    DEFAULT_STATE: str = os.getenv("DEFAULT_STATE", "NY")
    DEFAULT_COUNTRY: str = os.getenv("DEFAULT_COUNTRY", "US")
    DEVICE_LATITUDE: Optional[float] = _optional_float("DEVICE_LATITUDE")
    DEVICE_LONGITUDE: Optional[float] = _optional_float("DEVICE_LONGITUDE")

    # Geocoding (Nominatim policy requires a contactable User-Agent)
    NOMINATIM_BASE_URL: str = os.getenv("NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org")
    NOMINATIM_USER_AGENT: str = os.getenv("NOMINATIM_USER_AGENT", "Braidr/1.0 (support@braidr.app)")

    @property
    def api_base_url(self) -> str:
        if self.APP_ENV == "production":
            return self.API_BASE_URL_PROD
        return self.API_BASE_URL_DEV

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

settings = Settings()
