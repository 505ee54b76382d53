"""
Read-only booking queries for dashboards.

Every query is scoped to a business through session, event and experience.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import desc, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..cache import CacheKeyBuilder, get_cache
from ..config import get_settings
from ..models.booking import Booking, BookingStatus
from ..models.booking_item import BookingItem
from ..models.event import Event
from ..models.experience import Experience
from ..models.guest import Guest
from ..models.session import Session
from ..utils.exceptions import BookingNotFoundError, GuestNotFoundError, SessionNotFoundError, ValidationError
from .capacity_gate import resolve_capacity
from .pricing import to_money

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
MAX_GUEST_SEARCH = 50


class BookingQueryService:
    """Service projecting committed ledger state for dashboards."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()
        self.cache = get_cache()

    def _booking_options(self):
        return (
            selectinload(Booking.items).selectinload(BookingItem.add_on),
            selectinload(Booking.guest),
            selectinload(Booking.session)
            .selectinload(Session.event)
            .selectinload(Event.experience),
        )

    def _scoped(self, stmt, business_id: UUID):
        return (
            stmt.join(Booking.session)
            .join(Session.event)
            .join(Event.experience)
            .where(Experience.business_id == business_id)
        )

    async def list_bookings(
        self,
        business_id: UUID,
        experience_id: Optional[UUID] = None,
        event_id: Optional[UUID] = None,
        status: Optional[BookingStatus] = None,
        limit: int = 20,
        offset: int = 0
    ) -> Tuple[List[Booking], int]:
        """
        List bookings of a business, newest first.

        Returns:
            Tuple of (bookings, total_count)
        """
        if limit < 1 or limit > MAX_PAGE_SIZE:
            raise ValidationError(
                f"Limit must be between 1 and {MAX_PAGE_SIZE}",
                field_errors={"limit": [f"must be between 1 and {MAX_PAGE_SIZE}"]}
            )
        if offset < 0:
            raise ValidationError("Offset cannot be negative", field_errors={"offset": ["must be >= 0"]})

        filters = []
        if experience_id:
            filters.append(Experience.id == experience_id)
        if event_id:
            filters.append(Event.id == event_id)
        if status:
            filters.append(Booking.status == status)

        count_stmt = self._scoped(select(func.count(Booking.id)), business_id).where(*filters)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        stmt = (
            self._scoped(select(Booking), business_id)
            .where(*filters)
            .options(*self._booking_options())
            .order_by(desc(Booking.created_at), desc(Booking.id))
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total

    async def get_booking(self, business_id: UUID, booking_id: UUID) -> Booking:
        """Get one booking of the business with items, guest and session chain."""
        stmt = (
            self._scoped(select(Booking), business_id)
            .where(Booking.id == booking_id)
            .options(*self._booking_options())
        )
        booking = (await self.db.execute(stmt)).scalar_one_or_none()
        if not booking:
            raise BookingNotFoundError(str(booking_id))
        return booking

    async def list_guest_bookings(self, business_id: UUID, guest_id: UUID) -> List[Booking]:
        """All bookings of one guest, newest first."""
        guest = (await self.db.execute(
            select(Guest.id).where(Guest.id == guest_id, Guest.business_id == business_id)
        )).scalar_one_or_none()
        if guest is None:
            raise GuestNotFoundError(str(guest_id))

        stmt = (
            self._scoped(select(Booking), business_id)
            .where(Booking.guest_id == guest_id)
            .options(*self._booking_options())
            .order_by(desc(Booking.created_at), desc(Booking.id))
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_guests(
        self,
        business_id: UUID,
        search: Optional[str] = None,
        limit: int = 20
    ) -> List[Tuple[Guest, int]]:
        """
        Guest directory of a business with each guest's booking count.

        search matches first name, last name or email, ignoring case. Results
        are ordered by last name, then first name.
        """
        if limit < 1 or limit > MAX_GUEST_SEARCH:
            raise ValidationError(
                f"Limit must be between 1 and {MAX_GUEST_SEARCH}",
                field_errors={"limit": [f"must be between 1 and {MAX_GUEST_SEARCH}"]}
            )

        stmt = (
            select(Guest, func.count(Booking.id))
            .outerjoin(Booking, Booking.guest_id == Guest.id)
            .where(Guest.business_id == business_id)
            .group_by(Guest.id)
            .order_by(Guest.last_name, Guest.first_name, Guest.id)
            .limit(limit)
        )

        term = (search or "").strip()
        if term:
            stmt = stmt.where(or_(
                Guest.first_name.icontains(term, autoescape=True),
                Guest.last_name.icontains(term, autoescape=True),
                Guest.email.icontains(term, autoescape=True),
            ))

        rows = (await self.db.execute(stmt)).all()
        return [(guest, count) for guest, count in rows]

    async def get_session_availability(self, business_id: UUID, session_id: UUID) -> Dict[str, Any]:
        """
        Capacity, committed tickets and remaining spots of a session.

        Served from the cache when possible; the ledger invalidates the entry
        after every committed write.
        """
        cache_key = CacheKeyBuilder.session_availability(str(session_id))
        cached = await self.cache.get(cache_key)
        if cached and cached.get("business_id") == str(business_id):
            return cached["availability"]

        stmt = (
            select(Session)
            .join(Session.event)
            .join(Event.experience)
            .where(Session.id == session_id, Experience.business_id == business_id)
            .options(selectinload(Session.event).selectinload(Event.experience))
            .execution_options(populate_existing=True)
        )
        session = (await self.db.execute(stmt)).scalar_one_or_none()
        if not session:
            raise SessionNotFoundError(str(session_id))

        capacity = resolve_capacity(session)
        availability = {
            "session_id": str(session.id),
            "capacity": capacity,
            "committed_quantity": session.committed_quantity,
            "spots_available": max(capacity - session.committed_quantity, 0),
            "is_sold_out": session.committed_quantity >= capacity,
        }

        await self.cache.set(
            cache_key,
            {"business_id": str(business_id), "availability": availability},
            ttl=self.settings.availability_cache_ttl_seconds
        )
        return availability

    async def get_booking_stats(self, business_id: UUID) -> Dict[str, Any]:
        """Counts per status, tickets sold and revenue of non-cancelled bookings."""
        stmt = self._scoped(
            select(
                Booking.status,
                func.count(Booking.id),
                func.coalesce(func.sum(Booking.quantity), 0),
                func.coalesce(func.sum(Booking.total), 0),
            ),
            business_id
        ).group_by(Booking.status)

        rows = (await self.db.execute(stmt)).all()

        by_status = {status.value: 0 for status in BookingStatus}
        tickets_sold = 0
        revenue = Decimal("0.00")
        for status, count, quantity, total in rows:
            by_status[status.value] = count
            if status != BookingStatus.CANCELLED:
                tickets_sold += int(quantity)
                revenue += to_money(total)

        return {
            "total_bookings": sum(by_status.values()),
            "bookings_by_status": by_status,
            "tickets_sold": tickets_sold,
            "total_revenue": to_money(revenue),
        }
