from pydantic import BaseModel, model_validator
from typing import Optional, List
from enum import Enum

from braidr.schemas.stylist import Coordinates

class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class CancelledBy(str, Enum):
    CUSTOMER = "customer"
    STYLIST = "stylist"

class AppointmentLocation(BaseModel):
    address: str
    city: str = ""
    state: str = ""
    zipCode: str = ""
    coordinates: Optional[Coordinates] = None
    notes: Optional[str] = None

class AppointmentAddOn(BaseModel):
    id: str
    name: str
    price: float

class Appointment(BaseModel):
    id: str
    customerId: str
    stylistId: str
    serviceId: str
    bookingId: Optional[str] = None
    appointmentDate: str
    startTime: str
    endTime: Optional[str] = None
    duration: Optional[int] = None  # minutes
    status: AppointmentStatus = AppointmentStatus.PENDING
    location: AppointmentLocation
    contactNumber: str
    totalPrice: float
    addOns: List[AppointmentAddOn] = []
    specialRequests: Optional[str] = None
    cancellationReason: Optional[str] = None
    cancelledBy: Optional[CancelledBy] = None
    cancelledAt: Optional[str] = None
    confirmedAt: Optional[str] = None
    completedAt: Optional[str] = None
    reminderSent: bool = False
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None

    @model_validator(mode="after")
    def check_cancellation_fields(self):
        # Cancellation metadata exists exactly when the appointment is cancelled
        if self.status == AppointmentStatus.CANCELLED:
            if not self.cancelledBy or not self.cancellationReason:
                raise ValueError("cancelled appointments require cancelledBy and cancellationReason")
        elif self.cancelledBy or self.cancellationReason:
            raise ValueError("cancellation details are only allowed on cancelled appointments")
        return self

class BookingLocation(BaseModel):
    address: str
    city: str
    state: str
    zipCode: str
    notes: Optional[str] = None

class BookingRequest(BaseModel):
    stylistId: str
    serviceId: str
    appointmentDate: str  # YYYY-MM-DD
    startTime: str  # HH:MM
    location: BookingLocation
    contactNumber: str
    addOns: Optional[List[str]] = None
    specialRequests: Optional[str] = None
