"""
Capacity gate deciding whether a session can take more tickets.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import case, func, literal_column, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.booking import Booking, BookingStatus
from ..models.session import Session
from ..utils.exceptions import CapacityExceededError, ConflictError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CapacityDecision:
    """Outcome of a capacity check."""

    admitted: bool
    capacity: int
    committed: int
    requested_delta: int
    spots_available: int
    session_id: Optional[UUID] = None

    def raise_for_rejection(self) -> None:
        if not self.admitted:
            raise CapacityExceededError(
                self.spots_available,
                requested=self.requested_delta,
                session_id=str(self.session_id) if self.session_id else None
            )


def resolve_capacity(session: Session) -> int:
    """
    Resolve the capacity ceiling of a session.

    The nearest non-null override wins: session, then event, then experience.
    The session's event and experience must already be loaded.
    """
    if session.max_capacity is not None:
        return session.max_capacity
    if session.event.max_capacity is not None:
        return session.event.max_capacity
    return session.event.experience.max_capacity


class CapacityGate:
    """Admit or reject ticket deltas against a session's capacity ceiling."""

    def __init__(self, db: AsyncSession):
        self.db = db

    resolve_capacity = staticmethod(resolve_capacity)

    async def committed_quantity(
        self,
        session_id: UUID,
        exclude_booking_id: Optional[UUID] = None
    ) -> tuple[int, int]:
        """
        Sum ticket quantities of non-cancelled bookings on a session.

        Returns:
            (quantity held by other bookings, quantity held by the excluded booking)
        """
        if exclude_booking_id is None:
            held_by_excluded = literal_column("0")
            held_by_others = func.coalesce(func.sum(Booking.quantity), 0)
        else:
            is_excluded = Booking.id == exclude_booking_id
            held_by_excluded = func.coalesce(
                func.sum(case((is_excluded, Booking.quantity), else_=0)), 0
            )
            held_by_others = func.coalesce(
                func.sum(case((is_excluded, 0), else_=Booking.quantity)), 0
            )

        result = await self.db.execute(
            select(held_by_others, held_by_excluded).where(
                Booking.session_id == session_id,
                Booking.status != BookingStatus.CANCELLED
            )
        )
        others, excluded = result.one()
        return int(others), int(excluded)

    async def check(
        self,
        session: Session,
        requested_delta: int,
        exclude_booking_id: Optional[UUID] = None
    ) -> CapacityDecision:
        """
        Decide whether a session can absorb requested_delta more tickets.

        When exclude_booking_id is given the booking's own quantity is counted
        exactly once, so an in-place increase only pays for the difference.
        """
        capacity = resolve_capacity(session)
        others, held = await self.committed_quantity(session.id, exclude_booking_id)
        committed = others + held

        admitted = committed + requested_delta <= capacity
        decision = CapacityDecision(
            admitted=admitted,
            capacity=capacity,
            committed=committed,
            requested_delta=requested_delta,
            spots_available=max(capacity - committed, 0),
            session_id=session.id,
        )

        if not admitted:
            logger.info(
                "Capacity check rejected for session %s: committed=%s delta=%s capacity=%s",
                session.id, committed, requested_delta, capacity
            )

        return decision

    async def reserve(self, session_id: UUID, delta: int, capacity: int) -> None:
        """
        Add delta tickets to the session counter if the ceiling still allows it.

        Raises:
            ConflictError: When a concurrent writer consumed the spots first
        """
        result = await self.db.execute(
            update(Session)
            .where(
                Session.id == session_id,
                Session.committed_quantity + delta <= capacity
            )
            .values(
                committed_quantity=Session.committed_quantity + delta,
                version=Session.version + 1
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            logger.warning(
                "Concurrent capacity change on session %s while reserving %s tickets",
                session_id, delta
            )
            raise ConflictError(
                f"Session {session_id} was modified by another booking. Please try again."
            )

    async def release(self, session_id: UUID, quantity: int) -> None:
        """Return quantity tickets to the session, never going below zero."""
        result = await self.db.execute(
            update(Session)
            .where(Session.id == session_id)
            .values(
                committed_quantity=case(
                    (Session.committed_quantity >= quantity, Session.committed_quantity - quantity),
                    else_=0
                ),
                version=Session.version + 1
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            raise ConflictError(f"Session {session_id} disappeared while releasing capacity")
