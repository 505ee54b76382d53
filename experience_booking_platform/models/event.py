"""
Event model grouping sessions under an experience.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String,
    Text, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .experience import Experience
    from .session import Session
    from .add_on import EventAddOn


class Event(Base):
    """Event model with optional capacity and price overrides."""

    __tablename__ = "events"

    experience_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("experiences.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=True)

    # Event timing
    start_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True
    )
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Overrides; None falls back to the experience
    max_capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    base_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    experience: Mapped["Experience"] = relationship("Experience", back_populates="events")

    sessions: Mapped[List["Session"]] = relationship(
        "Session",
        back_populates="event",
        order_by="Session.start_time"
    )

    add_on_links: Mapped[List["EventAddOn"]] = relationship(
        "EventAddOn",
        back_populates="event",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("max_capacity IS NULL OR max_capacity > 0", name="ck_events_max_capacity_positive"),
        CheckConstraint("base_price IS NULL OR base_price >= 0", name="ck_events_base_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, name='{self.name}', start={self.start_date})>"
