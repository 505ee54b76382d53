"""
Business model, the tenant root every other record hangs from.
"""

from typing import List, TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

if TYPE_CHECKING:
    from .experience import Experience
    from .guest import Guest
    from .add_on import AddOn


class Business(Base):
    """A tenant publishing experiences."""

    __tablename__ = "businesses"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    # Relationships
    experiences: Mapped[List["Experience"]] = relationship(
        "Experience",
        back_populates="business"
    )

    guests: Mapped[List["Guest"]] = relationship(
        "Guest",
        back_populates="business"
    )

    add_ons: Mapped[List["AddOn"]] = relationship(
        "AddOn",
        back_populates="business"
    )

    def __repr__(self) -> str:
        return f"<Business(id={self.id}, slug='{self.slug}')>"
