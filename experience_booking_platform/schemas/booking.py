"""
Pydantic schemas for booking-related API requests and responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.booking import Booking, BookingStatus
from ..models.booking_item import BookingItemType


class BookingCreateRequest(BaseModel):
    """Schema for creating a new booking."""

    session_id: UUID = Field(..., description="ID of the session to book")
    guest_id: UUID = Field(..., description="ID of the guest making the booking")
    quantity: int = Field(..., ge=1, description="Number of tickets to book")
    add_on_ids: List[UUID] = Field(default_factory=list, description="Add-ons to attach to every ticket")

    @field_validator('add_on_ids')
    @classmethod
    def validate_unique_add_ons(cls, v):
        """Each add-on may only be selected once."""
        if len(set(v)) != len(v):
            raise ValueError("Each add-on can only be selected once")
        return v


class BookingUpdateRequest(BaseModel):
    """Schema for changing a booking's quantity and/or status."""

    quantity: Optional[int] = Field(None, ge=1, description="New ticket count")
    status: Optional[BookingStatus] = Field(None, description="New booking status")

    @field_validator('status', mode='before')
    @classmethod
    def normalize_status(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @model_validator(mode='after')
    def require_change(self):
        if self.quantity is None and self.status is None:
            raise ValueError("Provide a quantity, a status, or both")
        return self


class BookingItemResponse(BaseModel):
    """Schema for one priced line of a booking."""

    id: UUID
    item_type: BookingItemType
    add_on_id: Optional[UUID] = None
    add_on_name: Optional[str] = None
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    """Schema for booking responses."""

    id: UUID
    session_id: UUID
    guest_id: UUID
    quantity: int
    total: Decimal
    status: BookingStatus
    checked_in: bool = False
    checked_in_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    # Related data
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    session_start: Optional[datetime] = None
    event_id: Optional[UUID] = None
    event_name: Optional[str] = None
    experience_name: Optional[str] = None
    items: List[BookingItemResponse] = []

    model_config = {"from_attributes": True}

    @classmethod
    def from_booking(cls, booking: Booking) -> "BookingResponse":
        """Build a response from a booking loaded with guest, session chain and items."""
        session = booking.session
        return cls(
            id=booking.id,
            session_id=booking.session_id,
            guest_id=booking.guest_id,
            quantity=booking.quantity,
            total=booking.total,
            status=booking.status,
            checked_in=booking.checked_in,
            checked_in_at=booking.checked_in_at,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
            guest_name=booking.guest.full_name if booking.guest else None,
            guest_email=booking.guest.email if booking.guest else None,
            session_start=session.start_time if session else None,
            event_id=session.event.id if session else None,
            event_name=session.event.name if session else None,
            experience_name=session.event.experience.name if session else None,
            items=[
                BookingItemResponse(
                    id=item.id,
                    item_type=item.item_type,
                    add_on_id=item.add_on_id,
                    add_on_name=item.add_on.name if item.add_on else None,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    total_price=item.total_price,
                )
                for item in booking.items
            ],
        )


class BookingListResponse(BaseModel):
    """Schema for booking list responses."""

    bookings: List[BookingResponse]
    total: int
    limit: int
    offset: int


class BookingStatsResponse(BaseModel):
    """Schema for booking statistics."""

    total_bookings: int
    bookings_by_status: dict[str, int]
    tickets_sold: int
    total_revenue: Decimal


class SessionAvailabilityResponse(BaseModel):
    """Schema for a session's remaining capacity."""

    session_id: UUID
    capacity: int
    committed_quantity: int
    spots_available: int
    is_sold_out: bool
