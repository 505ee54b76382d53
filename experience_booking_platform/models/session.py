"""
Session model: one bookable time slot of an event.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .event import Event
    from .booking import Booking


class Session(Base):
    """Session model carrying the running occupancy counter."""

    __tablename__ = "sessions"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True
    )
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Overrides; None falls back to the event, then the experience
    max_capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    base_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    # Tickets held by non-cancelled bookings; written only by the booking ledger
    committed_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Bumped on every counter write
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Relationships
    event: Mapped["Event"] = relationship("Event", back_populates="sessions")

    bookings: Mapped[List["Booking"]] = relationship(
        "Booking",
        back_populates="session"
    )

    __table_args__ = (
        CheckConstraint("committed_quantity >= 0", name="ck_sessions_committed_non_negative"),
        CheckConstraint("max_capacity IS NULL OR max_capacity > 0", name="ck_sessions_max_capacity_positive"),
        CheckConstraint("base_price IS NULL OR base_price >= 0", name="ck_sessions_base_price_non_negative"),
        CheckConstraint("version > 0", name="ck_sessions_version_positive"),
    )

    @property
    def effective_base_price(self) -> Decimal:
        """Nearest non-null base price along session, event, experience."""
        if self.base_price is not None:
            return self.base_price
        if self.event.base_price is not None:
            return self.event.base_price
        return self.event.experience.base_price

    def __repr__(self) -> str:
        return (
            f"<Session(id={self.id}, event_id={self.event_id}, "
            f"start={self.start_time}, committed={self.committed_quantity})>"
        )
