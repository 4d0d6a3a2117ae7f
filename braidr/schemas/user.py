from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional
from enum import Enum

from braidr.schemas.auth import AuthSession

class UserRole(str, Enum):
    CUSTOMER = "customer"
    STYLIST = "stylist"

class AuthenticatedUser(BaseModel):
    """
    Snapshot of the signed-in principal. Immutable: a profile refresh
    produces a new instance.
    """
    id: str
    firstName: str = ""
    lastName: str = ""
    fullName: str
    email: str
    role: UserRole
    isEmailVerified: bool = False
    avatar: Optional[str] = None
    phone: Optional[str] = None
    session: Optional[AuthSession] = None

    class Config:
        frozen = True

class ProfileRow(BaseModel):
    """Row of the ``users`` profile table (snake_case columns)."""
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    role: UserRole
    is_email_verified: bool = False
    avatar: Optional[str] = None
    phone: Optional[str] = None

    def to_user(self, session: Optional[AuthSession] = None) -> AuthenticatedUser:
        full_name = " ".join(part for part in (self.first_name, self.last_name) if part)
        return AuthenticatedUser(
            id=self.id,
            firstName=self.first_name,
            lastName=self.last_name,
            fullName=full_name,
            email=self.email,
            role=self.role,
            isEmailVerified=self.is_email_verified,
            avatar=self.avatar,
            phone=self.phone,
            session=session,
        )

class ProfileCreate(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: UserRole
    is_email_verified: bool = False
    phone: Optional[str] = None

class ProfileUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    avatar: Optional[str] = None

class SignUpRequest(BaseModel):
    firstName: str = Field(..., min_length=1)
    lastName: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: UserRole
    phone: Optional[str] = None

    @field_validator("firstName", "lastName")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value
