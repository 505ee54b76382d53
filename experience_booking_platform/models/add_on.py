"""
Add-on catalog models.
"""

import uuid
from decimal import Decimal
from typing import List, TYPE_CHECKING

from sqlalchemy import (
    Boolean, CheckConstraint, ForeignKey, Integer, Numeric, String, Text,
    UniqueConstraint, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .business import Business
    from .event import Event
    from .booking_item import BookingItem


class AddOn(Base):
    """A purchasable extra offered alongside event tickets."""

    __tablename__ = "add_ons"

    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    business: Mapped["Business"] = relationship("Business", back_populates="add_ons")

    event_links: Mapped[List["EventAddOn"]] = relationship(
        "EventAddOn",
        back_populates="add_on",
        cascade="all, delete-orphan"
    )

    booking_items: Mapped[List["BookingItem"]] = relationship(
        "BookingItem",
        back_populates="add_on"
    )

    __table_args__ = (
        UniqueConstraint("business_id", "name", name="uq_add_ons_business_name"),
        CheckConstraint("price > 0", name="ck_add_ons_price_positive"),
    )

    def __repr__(self) -> str:
        return f"<AddOn(id={self.id}, name='{self.name}', price={self.price}, active={self.is_active})>"


class EventAddOn(Base):
    """Association of an add-on with an event it may be sold with."""

    __tablename__ = "event_add_ons"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    add_on_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("add_ons.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Relationships
    event: Mapped["Event"] = relationship("Event", back_populates="add_on_links")
    add_on: Mapped["AddOn"] = relationship("AddOn", back_populates="event_links")

    __table_args__ = (
        UniqueConstraint("event_id", "add_on_id", name="uq_event_add_ons_pair"),
    )
