"""
Booking line items with price snapshots.
"""

import enum
import uuid
from decimal import Decimal
from typing import Optional, TYPE_CHECKING

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Integer, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .booking import Booking
    from .add_on import AddOn


class BookingItemType(enum.Enum):
    """Kind of charged line."""
    SESSION = "SESSION"
    ADD_ON = "ADD_ON"


class BookingItem(Base):
    """One charged line within a booking."""

    __tablename__ = "booking_items"

    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    item_type: Mapped[BookingItemType] = mapped_column(Enum(BookingItemType), nullable=False)

    # Null for SESSION lines
    add_on_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("add_ons.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    # Price captured at purchase time
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Relationships
    booking: Mapped["Booking"] = relationship("Booking", back_populates="items")
    add_on: Mapped[Optional["AddOn"]] = relationship("AddOn", back_populates="booking_items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_booking_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_booking_items_unit_price_non_negative"),
        CheckConstraint(
            "(item_type = 'SESSION' AND add_on_id IS NULL) OR (item_type = 'ADD_ON' AND add_on_id IS NOT NULL)",
            name="ck_booking_items_add_on_reference"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<BookingItem(id={self.id}, type={self.item_type.value}, "
            f"quantity={self.quantity}, total={self.total_price})>"
        )
