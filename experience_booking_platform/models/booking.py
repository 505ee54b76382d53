"""
Booking model for a guest's purchase against one session.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, DateTime, Enum, ForeignKey, Integer, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .guest import Guest
    from .session import Session
    from .booking_item import BookingItem


class BookingStatus(enum.Enum):
    """Enumeration for booking status."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Booking(Base):
    """Booking model; created and mutated only through the booking ledger."""

    __tablename__ = "bookings"

    # Foreign key relationships
    session_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sessions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    guest_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("guests.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Booking details
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    total: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal('0.00')
    )

    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus),
        default=BookingStatus.PENDING,
        nullable=False,
        index=True
    )

    # Arrival at the venue
    checked_in: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    guest: Mapped["Guest"] = relationship("Guest", back_populates="bookings")
    session: Mapped["Session"] = relationship("Session", back_populates="bookings")

    items: Mapped[List["BookingItem"]] = relationship(
        "BookingItem",
        back_populates="booking",
        cascade="all, delete-orphan",
        order_by="BookingItem.item_type.desc()"
    )

    # Constraints
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_bookings_quantity_positive"),
        CheckConstraint("total >= 0", name="ck_bookings_total_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, session_id={self.session_id}, "
            f"quantity={self.quantity}, status={self.status.value})>"
        )
