"""
Schemas for experiences, events, sessions, add-ons and guests.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator


class ExperienceCreate(BaseModel):
    """Schema for creating an experience."""

    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=255, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    description: Optional[str] = None
    base_price: Decimal = Field(..., ge=0, description="Ticket price unless an event or session overrides it")
    duration_minutes: int = Field(60, gt=0)
    max_capacity: int = Field(..., gt=0, description="Capacity unless an event or session overrides it")


class ExperienceResponse(BaseModel):
    """Schema for experience responses."""

    id: UUID
    business_id: UUID
    name: str
    slug: str
    description: Optional[str]
    base_price: Decimal
    duration_minutes: int
    max_capacity: int
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EventCreate(BaseModel):
    """Schema for creating an event under an experience."""

    experience_id: UUID
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    start_date: datetime
    end_date: datetime
    max_capacity: Optional[int] = Field(None, gt=0)
    base_price: Optional[Decimal] = Field(None, ge=0)

    @model_validator(mode='after')
    def end_after_start(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class EventResponse(BaseModel):
    """Schema for event responses."""

    id: UUID
    experience_id: UUID
    name: str
    slug: str
    description: Optional[str]
    start_date: datetime
    end_date: datetime
    max_capacity: Optional[int]
    base_price: Optional[Decimal]
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class SessionCreate(BaseModel):
    """Schema for creating a session under an event."""

    event_id: UUID
    start_time: datetime
    end_time: datetime
    max_capacity: Optional[int] = Field(None, gt=0)
    base_price: Optional[Decimal] = Field(None, ge=0)

    @model_validator(mode='after')
    def end_after_start(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class SessionUpdate(BaseModel):
    """Schema for rescheduling a session."""

    start_time: datetime
    end_time: datetime

    @model_validator(mode='after')
    def end_after_start(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class SessionResponse(BaseModel):
    """Schema for session responses."""

    id: UUID
    event_id: UUID
    start_time: datetime
    end_time: datetime
    max_capacity: Optional[int]
    base_price: Optional[Decimal]
    committed_quantity: int

    model_config = ConfigDict(from_attributes=True)


class AddOnCreate(BaseModel):
    """Schema for creating an add-on."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(..., gt=0)
    is_active: bool = True
    sort_order: int = Field(0, ge=0)


class AddOnUpdate(BaseModel):
    """Schema for updating an add-on; existing booking items keep their prices."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, gt=0)
    is_active: Optional[bool] = None
    sort_order: Optional[int] = Field(None, ge=0)


class AddOnResponse(BaseModel):
    """Schema for add-on responses."""

    id: UUID
    name: str
    description: Optional[str]
    price: Decimal
    is_active: bool
    sort_order: int

    model_config = ConfigDict(from_attributes=True)


class EventAddOnListResponse(BaseModel):
    """Add-ons selectable for an event."""

    event_id: UUID
    add_ons: List[AddOnResponse]


class GuestCreate(BaseModel):
    """Schema for the checkout guest form."""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: Optional[str] = Field(None, max_length=50)
    zip_code: Optional[str] = Field(None, max_length=20)
    marketing_opt_in: bool = False


class GuestResponse(BaseModel):
    """Schema for guest responses."""

    id: UUID
    first_name: str
    last_name: str
    email: str
    phone: Optional[str]
    zip_code: Optional[str]
    marketing_opt_in: bool

    model_config = ConfigDict(from_attributes=True)


class GuestDirectoryEntry(GuestResponse):
    """Guest listing row with the number of bookings the guest has made."""

    booking_count: int = 0
