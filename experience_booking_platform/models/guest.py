"""
Guest model for customers of a business.
"""

import uuid
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .business import Business
    from .booking import Booking


class Guest(Base):
    """A customer record, unique by email within a business."""

    __tablename__ = "guests"

    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    zip_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    marketing_opt_in: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    business: Mapped["Business"] = relationship("Business", back_populates="guests")

    bookings: Mapped[List["Booking"]] = relationship(
        "Booking",
        back_populates="guest"
    )

    __table_args__ = (
        UniqueConstraint("business_id", "email", name="uq_guests_business_email"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Guest(id={self.id}, business_id={self.business_id})>"
