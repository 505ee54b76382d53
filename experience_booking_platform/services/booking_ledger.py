"""
Booking ledger: creates, resizes and changes the status of bookings.

Every operation runs its capacity check, price calculation, booking write and
session counter update in one transaction. The session row is locked for the
duration and the counter is only moved through a conditional update, so two
concurrent writers can never both take the last spots.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, nullcontext
from datetime import datetime, timezone
from functools import partial
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..cache import CacheInvalidator, session_lock
from ..config import get_settings
from ..models.add_on import AddOn, EventAddOn
from ..models.booking import Booking, BookingStatus
from ..models.booking_item import BookingItem
from ..models.event import Event
from ..models.experience import Experience
from ..models.guest import Guest
from ..models.session import Session
from ..utils.exceptions import (
    AddOnNotFoundError,
    BookingCancelledError,
    BookingNotFoundError,
    GuestNotFoundError,
    IllegalTransitionError,
    InvalidAddOnError,
    SessionNotFoundError,
    StorageError,
    ValidationError,
)
from ..utils.logging_config import log_business_event
from ..utils.retry import retry_on_conflict
from .capacity_gate import CapacityGate
from .pricing import price_booking, reprice_for_quantity

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.COMPLETED, BookingStatus.CANCELLED},
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
}


def is_transition_allowed(current: BookingStatus, requested: BookingStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS[current]


class BookingLedger:
    """Service owning every write to bookings and session occupancy."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settings = get_settings()
        self.gate = CapacityGate(db)

    @retry_on_conflict()
    async def create_booking(
        self,
        business_id: UUID,
        session_id: UUID,
        guest_id: UUID,
        quantity: int,
        add_on_ids: Optional[Sequence[UUID]] = None
    ) -> Booking:
        """
        Create a confirmed booking with its priced line items.

        Args:
            business_id: Tenant of the caller
            session_id: Session to book
            guest_id: Guest making the booking
            quantity: Number of tickets
            add_on_ids: Add-ons to attach, each priced once per ticket

        Returns:
            The created booking with items loaded

        Raises:
            ValidationError: Malformed quantity or duplicate add-ons
            NotFoundError: Session or guest absent or outside the business
            InvalidAddOnError: Add-on inactive or not offered for the event
            CapacityExceededError: Not enough spots left
            ConflictError: A concurrent booking won the race twice in a row
            StorageError: The transaction failed and was rolled back
        """
        add_on_ids = list(add_on_ids or [])
        self._validate_quantity(quantity)
        if len(set(add_on_ids)) != len(add_on_ids):
            raise ValidationError(
                "Each add-on can only be selected once",
                field_errors={"add_on_ids": ["contains duplicates"]}
            )

        logger.info(f"Creating booking for guest {guest_id}, session {session_id}, quantity {quantity}")

        async with self._session_lock(session_id), self._unit_of_work():
            session = await self._lock_session(business_id, session_id)
            guest = await self._get_guest(business_id, guest_id)
            add_ons = await self._resolve_add_ons(business_id, session.event_id, add_on_ids)

            decision = await self.gate.check(session, quantity)
            decision.raise_for_rejection()

            priced = price_booking(
                session.effective_base_price,
                quantity,
                [(add_on.id, add_on.price) for add_on in add_ons]
            )

            await self.gate.reserve(session.id, quantity, decision.capacity)

            booking = Booking(
                session_id=session.id,
                guest_id=guest.id,
                quantity=quantity,
                total=priced.total,
                status=BookingStatus.CONFIRMED,
            )
            booking.items = [
                BookingItem(
                    item_type=line.item_type,
                    add_on_id=line.add_on_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total_price=line.total_price,
                )
                for line in priced.lines
            ]
            self.db.add(booking)
            await self.db.flush()
            booking_id = booking.id

        booking = await self._reload(booking_id)
        await CacheInvalidator.invalidate_session_caches(str(session_id))

        log_business_event(
            "booking_created",
            {
                "booking_id": str(booking.id),
                "session_id": str(session_id),
                "quantity": quantity,
                "total": str(booking.total),
            },
            business_id=str(business_id)
        )
        await self._queue_notification("confirmation", booking.id)

        logger.info(f"Booking {booking.id} created successfully")
        return booking

    async def update_quantity(self, business_id: UUID, booking_id: UUID, new_quantity: int) -> Booking:
        """Change the ticket count of a booking. See update_booking."""
        return await self.update_booking(business_id, booking_id, quantity=new_quantity)

    async def update_status(self, business_id: UUID, booking_id: UUID, new_status: BookingStatus) -> Booking:
        """Move a booking along its lifecycle. See update_booking."""
        return await self.update_booking(business_id, booking_id, status=new_status)

    @retry_on_conflict()
    async def update_booking(
        self,
        business_id: UUID,
        booking_id: UUID,
        quantity: Optional[int] = None,
        status: Optional[BookingStatus] = None
    ) -> Booking:
        """
        Change a booking's quantity, status, or both in one transaction.

        The quantity change is applied first: increases go through the
        capacity gate with the booking's own quantity excluded, decreases
        release the difference, and stored unit prices are reused. Then the
        status moves, and cancelling releases the booking's tickets. A status
        equal to the current one is ignored when a quantity is also given.
        Any rejection rolls back both changes.

        Raises:
            ValidationError: Nothing to change, bad quantity or unknown status
            BookingNotFoundError: Booking absent or outside the business
            BookingCancelledError: Quantity change on a cancelled booking
            CapacityExceededError: The increase does not fit
            IllegalTransitionError: The status move is not permitted
        """
        if quantity is None and status is None:
            raise ValidationError("Provide a quantity, a status, or both")
        if quantity is not None:
            self._validate_quantity(quantity)
        new_status = self._coerce_status(status) if status is not None else None

        session_id = await self._booking_session_id(business_id, booking_id)

        async with self._session_lock(session_id), self._unit_of_work():
            session = await self._lock_session(business_id, session_id)
            booking = await self._get_booking(business_id, booking_id)
            old_quantity = booking.quantity
            old_status = booking.status

            if quantity is not None:
                await self._resize(session, booking, quantity)

            if new_status is not None and not (quantity is not None and new_status == old_status):
                if not is_transition_allowed(old_status, new_status):
                    raise IllegalTransitionError(str(booking_id), old_status.value, new_status.value)
                if new_status == BookingStatus.CANCELLED:
                    await self.gate.release(session.id, booking.quantity)
                booking.status = new_status

            await self.db.flush()

        booking = await self._reload(booking_id)
        quantity_changed = booking.quantity != old_quantity
        status_changed = booking.status != old_status

        if not quantity_changed and not status_changed:
            logger.info(f"Booking {booking_id} already has quantity {old_quantity}")
            return booking

        if quantity_changed or booking.status == BookingStatus.CANCELLED:
            await CacheInvalidator.invalidate_session_caches(str(session_id))

        if quantity_changed:
            log_business_event(
                "booking_quantity_changed",
                {
                    "booking_id": str(booking_id),
                    "old_quantity": old_quantity,
                    "new_quantity": booking.quantity,
                    "total": str(booking.total),
                },
                business_id=str(business_id)
            )
            logger.info(f"Booking {booking_id} quantity changed from {old_quantity} to {booking.quantity}")

        if status_changed:
            log_business_event(
                "booking_status_changed",
                {
                    "booking_id": str(booking_id),
                    "old_status": old_status.value,
                    "new_status": booking.status.value,
                },
                business_id=str(business_id)
            )
            logger.info(f"Booking {booking_id} moved from {old_status.value} to {booking.status.value}")

            if booking.status == BookingStatus.CANCELLED:
                await self._queue_notification("cancellation", booking.id)
            elif booking.status == BookingStatus.CONFIRMED:
                await self._queue_notification("confirmation", booking.id)

        return booking

    async def check_in(self, business_id: UUID, booking_id: UUID) -> Booking:
        """
        Mark the guest of a booking as arrived.

        Checking in twice keeps the first arrival time. Capacity is untouched.

        Raises:
            BookingNotFoundError: Booking absent or outside the business
            BookingCancelledError: Booking is cancelled
        """
        async with self._unit_of_work():
            booking = await self._get_booking(business_id, booking_id)
            if booking.status == BookingStatus.CANCELLED:
                raise BookingCancelledError(str(booking_id))

            first_arrival = not booking.checked_in
            if first_arrival:
                booking.checked_in = True
                booking.checked_in_at = datetime.now(timezone.utc)
                await self.db.flush()

        if first_arrival:
            log_business_event("booking_checked_in", {"booking_id": str(booking_id)}, business_id=str(business_id))
            logger.info(f"Booking {booking_id} checked in")
        return await self._reload(booking_id)

    # Private helper methods

    @asynccontextmanager
    async def _unit_of_work(self):
        """Commit on success; roll back and translate storage failures otherwise."""
        try:
            yield
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Storage failure during booking write: {e}")
            raise StorageError() from e
        except Exception:
            await self.db.rollback()
            raise

    def _session_lock(self, session_id: UUID):
        """Redis lock on the session when enabled, otherwise a no-op."""
        if not self.settings.enable_session_locks:
            return nullcontext()
        return session_lock(str(session_id), ttl=self.settings.session_lock_timeout_seconds)

    async def _resize(self, session: Session, booking: Booking, new_quantity: int) -> None:
        """Move the session counter by the quantity difference and rescale the items."""
        if booking.status == BookingStatus.CANCELLED:
            raise BookingCancelledError(str(booking.id))

        delta = new_quantity - booking.quantity
        if delta > 0:
            decision = await self.gate.check(session, delta, exclude_booking_id=booking.id)
            decision.raise_for_rejection()
            await self.gate.reserve(session.id, delta, decision.capacity)
        elif delta < 0:
            await self.gate.release(session.id, -delta)
        else:
            return

        priced = reprice_for_quantity(booking.items, new_quantity)
        for item, line in zip(booking.items, priced.lines):
            item.quantity = line.quantity
            item.total_price = line.total_price
        booking.quantity = new_quantity
        booking.total = priced.total

    def _validate_quantity(self, quantity: int) -> None:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(
                "Quantity must be a positive integer",
                field_errors={"quantity": ["must be a positive integer"]}
            )
        if quantity > self.settings.max_booking_quantity:
            raise ValidationError(
                f"Quantity cannot exceed {self.settings.max_booking_quantity}",
                field_errors={"quantity": [f"must be at most {self.settings.max_booking_quantity}"]}
            )

    def _coerce_status(self, status) -> BookingStatus:
        if isinstance(status, BookingStatus):
            return status
        try:
            return BookingStatus(str(status).upper())
        except ValueError:
            raise ValidationError(
                f"Unknown booking status: {status}",
                field_errors={"status": [f"must be one of {[s.value for s in BookingStatus]}"]}
            )

    async def _lock_session(self, business_id: UUID, session_id: UUID) -> Session:
        """Load a session within the business and lock its row."""
        result = await self.db.execute(
            select(Session)
            .join(Session.event)
            .join(Event.experience)
            .where(
                Session.id == session_id,
                Experience.business_id == business_id
            )
            .options(selectinload(Session.event).selectinload(Event.experience))
            .with_for_update(of=Session)
            .execution_options(populate_existing=True)
        )
        session = result.scalar_one_or_none()
        if not session:
            raise SessionNotFoundError(str(session_id))
        return session

    async def _get_guest(self, business_id: UUID, guest_id: UUID) -> Guest:
        result = await self.db.execute(
            select(Guest).where(Guest.id == guest_id, Guest.business_id == business_id)
        )
        guest = result.scalar_one_or_none()
        if not guest:
            raise GuestNotFoundError(str(guest_id))
        return guest

    async def _resolve_add_ons(
        self,
        business_id: UUID,
        event_id: UUID,
        add_on_ids: List[UUID]
    ) -> List[AddOn]:
        """Load the requested add-ons and reject any not offered for the event."""
        if not add_on_ids:
            return []

        result = await self.db.execute(
            select(AddOn).where(AddOn.id.in_(add_on_ids), AddOn.business_id == business_id)
        )
        found = {add_on.id: add_on for add_on in result.scalars().all()}

        linked_result = await self.db.execute(
            select(EventAddOn.add_on_id).where(
                EventAddOn.event_id == event_id,
                EventAddOn.add_on_id.in_(add_on_ids)
            )
        )
        linked = set(linked_result.scalars().all())

        add_ons = []
        for add_on_id in add_on_ids:
            add_on = found.get(add_on_id)
            if add_on is None:
                raise AddOnNotFoundError(str(add_on_id))
            if not add_on.is_active or add_on_id not in linked:
                raise InvalidAddOnError(str(add_on_id), event_id=str(event_id))
            add_ons.append(add_on)

        return add_ons

    def _scoped_booking_query(self, business_id: UUID, booking_id: UUID, *columns):
        return (
            select(*(columns or (Booking,)))
            .join(Booking.session)
            .join(Session.event)
            .join(Event.experience)
            .where(
                Booking.id == booking_id,
                Experience.business_id == business_id
            )
        )

    async def _booking_session_id(self, business_id: UUID, booking_id: UUID) -> UUID:
        try:
            result = await self.db.execute(
                self._scoped_booking_query(business_id, booking_id, Booking.session_id)
            )
            session_id = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Storage failure loading booking {booking_id}: {e}")
            raise StorageError() from e
        if session_id is None:
            raise BookingNotFoundError(str(booking_id))
        return session_id

    async def _get_booking(self, business_id: UUID, booking_id: UUID) -> Booking:
        result = await self.db.execute(
            self._scoped_booking_query(business_id, booking_id)
            .options(selectinload(Booking.items))
            .with_for_update(of=Booking)
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if not booking:
            raise BookingNotFoundError(str(booking_id))
        return booking

    async def _reload(self, booking_id: UUID) -> Booking:
        """Reload a committed booking with everything its responses need."""
        result = await self.db.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .options(
                selectinload(Booking.items).selectinload(BookingItem.add_on),
                selectinload(Booking.guest),
                selectinload(Booking.session)
                .selectinload(Session.event)
                .selectinload(Event.experience),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _queue_notification(self, kind: str, booking_id: UUID) -> None:
        """Hand a notification to the worker; failures never affect the booking."""
        if not self.settings.notifications_enabled:
            return

        try:
            from ..tasks.notification_tasks import (
                send_booking_cancellation_task,
                send_booking_confirmation_task,
            )
            task = send_booking_cancellation_task if kind == "cancellation" else send_booking_confirmation_task
            # Publishing talks to the broker synchronously
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, partial(task.delay, str(booking_id)))
            logger.info(f"Booking {kind} notification queued for {booking_id}")
        except Exception as e:
            logger.warning(f"Failed to queue booking {kind} notification for {booking_id}: {e}")
