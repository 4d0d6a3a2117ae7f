from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from enum import Enum

class SortBy(str, Enum):
    DISTANCE = "distance"
    RATING = "rating"
    PRICE = "price"
    EXPERIENCE = "experience"

class Coordinates(BaseModel):
    latitude: float
    longitude: float

class StylistLocation(BaseModel):
    address: str = ""
    city: str = ""
    state: str = ""
    zipCode: str = ""
    coordinates: Optional[Coordinates] = None

class WorkingHours(BaseModel):
    start: str
    end: str
    isWorking: bool = True

class Stylist(BaseModel):
    id: str
    userId: Optional[str] = None
    businessName: Optional[str] = None
    bio: str = ""
    specialties: List[str] = []
    experience: str = ""
    location: Optional[StylistLocation] = None
    serviceArea: float = 0
    portfolio: List[str] = []
    rating: float = Field(0, ge=0, le=5)
    reviewCount: int = 0
    totalBookings: int = 0
    isVerified: bool = False
    isAvailable: bool = True
    languages: List[str] = []
    workingHours: Dict[str, WorkingHours] = {}
    responseTime: Optional[float] = None
    features: List[str] = []
    distance: Optional[str] = None
    availableNext: Optional[str] = None

class SearchFilters(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    radius: Optional[float] = None
    specialties: Optional[List[str]] = None
    priceMin: Optional[float] = None
    priceMax: Optional[float] = None
    rating: Optional[float] = None
    availableToday: Optional[bool] = None
    features: Optional[List[str]] = None
    sortBy: Optional[SortBy] = None
    page: Optional[int] = None
    limit: Optional[int] = None

    def has_center(self) -> bool:
        return self.latitude is not None and self.longitude is not None
