from pydantic import BaseModel
from typing import Optional

class LocationCoordinates(BaseModel):
    latitude: float
    longitude: float

class AddressComponents(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zipCode: Optional[str] = None
    country: Optional[str] = None

class LocationResult(BaseModel):
    coordinates: LocationCoordinates
    address: Optional[AddressComponents] = None
    timestamp: int  # epoch milliseconds

class PermissionStatus(BaseModel):
    granted: bool
    canAskAgain: bool
    status: str
