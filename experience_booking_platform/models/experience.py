"""
Experience model, the top-level offering of a business.
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


class Experience(Base):
    """Experience model supplying the final capacity and price fallback."""

    __tablename__ = "experiences"

    business_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=True)

    base_price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=Decimal('0.00')
    )
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)

    # Final capacity fallback, always present
    max_capacity: Mapped[int] = mapped_column(Integer, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    business: Mapped["Business"] = relationship("Business", back_populates="experiences")

    events: Mapped[List["Event"]] = relationship(
        "Event",
        back_populates="experience",
        order_by="Event.start_date"
    )

    __table_args__ = (
        UniqueConstraint("business_id", "slug", name="uq_experiences_business_slug"),
        CheckConstraint("max_capacity > 0", name="ck_experiences_max_capacity_positive"),
        CheckConstraint("base_price >= 0", name="ck_experiences_base_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Experience(id={self.id}, name='{self.name}', capacity={self.max_capacity})>"
