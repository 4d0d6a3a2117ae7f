from pydantic import BaseModel
from typing import Optional, List

class AddOn(BaseModel):
    id: str
    name: str
    description: str = ""
    price: float

class Service(BaseModel):
    id: str
    stylistId: str
    name: str
    description: str = ""
    category: str = ""
    price: float
    duration: str = ""  # display string, e.g. "3h 30m"
    durationMinutes: int
    image: Optional[str] = None
    isActive: bool = True
    bookingCount: int = 0
    addOns: List[AddOn] = []
    tags: List[str] = []
