"""Tests for creating, resizing and changing the status of bookings."""

import asyncio
import logging
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from experience_booking_platform.config import get_settings
from experience_booking_platform.models import AddOn, Booking, BookingItemType, BookingStatus, Session
from experience_booking_platform.services.booking_ledger import (
    ALLOWED_TRANSITIONS,
    BookingLedger,
    is_transition_allowed,
)
from experience_booking_platform.services.booking_queries import BookingQueryService
from experience_booking_platform.tasks import notification_tasks
from experience_booking_platform.utils.exceptions import (
    AddOnNotFoundError,
    BookingCancelledError,
    BookingNotFoundError,
    CapacityExceededError,
    ConflictError,
    GuestNotFoundError,
    IllegalTransitionError,
    InvalidAddOnError,
    SessionNotFoundError,
    StorageError,
    ValidationError,
)


async def _create(session_factory, seed, quantity, add_on_ids=None):
    async with session_factory() as db:
        return await BookingLedger(db).create_booking(
            seed.business_id, seed.session_id, seed.guest_id, quantity, add_on_ids
        )


async def _committed(session_factory, session_id):
    """Return (session counter, sum of non-cancelled booking quantities)."""
    async with session_factory() as db:
        counter = (await db.execute(
            select(Session.committed_quantity).where(Session.id == session_id)
        )).scalar_one()
        held = (await db.execute(
            select(func.coalesce(func.sum(Booking.quantity), 0)).where(
                Booking.session_id == session_id,
                Booking.status != BookingStatus.CANCELLED
            )
        )).scalar_one()
        return counter, int(held)


class TestCreateBooking:

    async def test_fills_session_then_rejects(self, session_factory, seed):
        booking = await _create(session_factory, seed, 10)

        assert booking.status == BookingStatus.CONFIRMED
        assert await _committed(session_factory, seed.session_id) == (10, 10)

        with pytest.raises(CapacityExceededError) as exc_info:
            await _create(session_factory, seed, 1)
        assert exc_info.value.spots_available == 0
        assert await _committed(session_factory, seed.session_id) == (10, 10)

    async def test_prices_session_and_add_on_lines(self, session_factory, seed):
        booking = await _create(session_factory, seed, 2, [seed.wine_id])

        session_line, add_on_line = booking.items
        assert session_line.item_type == BookingItemType.SESSION
        assert session_line.add_on_id is None
        assert (session_line.unit_price, session_line.quantity, session_line.total_price) == (
            Decimal("19.00"), 2, Decimal("38.00")
        )
        assert add_on_line.item_type == BookingItemType.ADD_ON
        assert add_on_line.add_on.name == "Wine"
        assert (add_on_line.unit_price, add_on_line.quantity, add_on_line.total_price) == (
            Decimal("3.95"), 2, Decimal("7.90")
        )
        assert booking.total == Decimal("45.90")

    async def test_loads_relations_for_responses(self, session_factory, seed):
        booking = await _create(session_factory, seed, 1)

        assert booking.guest.full_name == "Ada Lovelace"
        assert booking.session.event.experience.name == "Sunset Cruise"
        assert booking.created_at is not None

    @pytest.mark.parametrize("quantity", [0, -3])
    async def test_rejects_non_positive_quantity(self, session_factory, seed, quantity):
        with pytest.raises(ValidationError):
            await _create(session_factory, seed, quantity)

    async def test_rejects_quantity_over_booking_limit(self, session_factory, seed):
        with pytest.raises(ValidationError):
            await _create(session_factory, seed, 101)

    async def test_rejects_duplicate_add_ons(self, session_factory, seed):
        with pytest.raises(ValidationError):
            await _create(session_factory, seed, 1, [seed.wine_id, seed.wine_id])

    async def test_rejects_add_on_not_offered_with_event(self, session_factory, seed):
        with pytest.raises(InvalidAddOnError):
            await _create(session_factory, seed, 1, [seed.unlinked_add_on_id])
        assert await _committed(session_factory, seed.session_id) == (0, 0)

    async def test_rejects_inactive_add_on(self, session_factory, seed):
        async with session_factory() as db:
            await db.execute(update(AddOn).where(AddOn.id == seed.photo_id).values(is_active=False))
            await db.commit()

        with pytest.raises(InvalidAddOnError):
            await _create(session_factory, seed, 1, [seed.photo_id])

    async def test_rejects_unknown_add_on(self, session_factory, seed):
        with pytest.raises(AddOnNotFoundError):
            await _create(session_factory, seed, 1, [uuid4()])

    async def test_scoped_to_business(self, session_factory, seed):
        async with session_factory() as db:
            ledger = BookingLedger(db)
            with pytest.raises(SessionNotFoundError):
                await ledger.create_booking(seed.other_business_id, seed.session_id, seed.other_guest_id, 1)
            with pytest.raises(GuestNotFoundError):
                await ledger.create_booking(seed.business_id, seed.session_id, seed.other_guest_id, 1)

    async def test_uses_session_capacity_override(self, session_factory, seed):
        async with session_factory() as db:
            await db.execute(update(Session).where(Session.id == seed.session_id).values(max_capacity=3))
            await db.commit()

        await _create(session_factory, seed, 3)
        with pytest.raises(CapacityExceededError):
            await _create(session_factory, seed, 1)


class TestUpdateQuantity:

    async def test_increase_only_pays_for_difference(self, session_factory, seed):
        booking = await _create(session_factory, seed, 8)

        async with session_factory() as db:
            with pytest.raises(CapacityExceededError) as exc_info:
                await BookingLedger(db).update_quantity(seed.business_id, booking.id, 11)
        assert exc_info.value.spots_available == 2

        async with session_factory() as db:
            resized = await BookingLedger(db).update_quantity(seed.business_id, booking.id, 10)
        assert resized.quantity == 10
        assert await _committed(session_factory, seed.session_id) == (10, 10)

    async def test_decrease_releases_spots(self, session_factory, seed):
        booking = await _create(session_factory, seed, 6)

        async with session_factory() as db:
            resized = await BookingLedger(db).update_quantity(seed.business_id, booking.id, 2)

        assert resized.quantity == 2
        assert resized.total == Decimal("38.00")
        assert await _committed(session_factory, seed.session_id) == (2, 2)

    async def test_rescales_every_line_and_total(self, session_factory, seed):
        booking = await _create(session_factory, seed, 2, [seed.wine_id, seed.photo_id])

        async with session_factory() as db:
            resized = await BookingLedger(db).update_quantity(seed.business_id, booking.id, 3)

        assert all(item.quantity == 3 for item in resized.items)
        assert resized.total == sum(item.total_price for item in resized.items)
        assert resized.total == Decimal("80.70")

    async def test_keeps_price_snapshot_after_catalog_change(self, session_factory, seed):
        booking = await _create(session_factory, seed, 2, [seed.wine_id])

        async with session_factory() as db:
            await db.execute(update(AddOn).where(AddOn.id == seed.wine_id).values(price=Decimal("9.99")))
            await db.commit()

        async with session_factory() as db:
            resized = await BookingLedger(db).update_quantity(seed.business_id, booking.id, 4)

        add_on_line = resized.items[1]
        assert add_on_line.unit_price == Decimal("3.95")
        assert add_on_line.total_price == Decimal("15.80")
        assert resized.total == Decimal("91.80")

    async def test_same_quantity_is_a_no_op(self, session_factory, seed):
        booking = await _create(session_factory, seed, 4)

        async with session_factory() as db:
            unchanged = await BookingLedger(db).update_quantity(seed.business_id, booking.id, 4)

        assert unchanged.quantity == 4
        assert unchanged.total == booking.total
        assert await _committed(session_factory, seed.session_id) == (4, 4)

    async def test_cancelled_booking_cannot_be_resized(self, session_factory, seed):
        booking = await _create(session_factory, seed, 2)
        async with session_factory() as db:
            await BookingLedger(db).update_status(seed.business_id, booking.id, BookingStatus.CANCELLED)

        async with session_factory() as db:
            with pytest.raises(BookingCancelledError):
                await BookingLedger(db).update_quantity(seed.business_id, booking.id, 1)

    async def test_other_business_cannot_see_booking(self, session_factory, seed):
        booking = await _create(session_factory, seed, 2)

        async with session_factory() as db:
            with pytest.raises(BookingNotFoundError):
                await BookingLedger(db).update_quantity(seed.other_business_id, booking.id, 1)


class TestUpdateStatus:

    async def test_cancel_releases_capacity_for_next_booking(self, session_factory, seed):
        first = await _create(session_factory, seed, 3)
        await _create(session_factory, seed, 4)
        assert await _committed(session_factory, seed.session_id) == (7, 7)

        async with session_factory() as db:
            cancelled = await BookingLedger(db).update_status(seed.business_id, first.id, BookingStatus.CANCELLED)
        assert cancelled.status == BookingStatus.CANCELLED
        assert await _committed(session_factory, seed.session_id) == (4, 4)

        await _create(session_factory, seed, 6)
        assert await _committed(session_factory, seed.session_id) == (10, 10)

    async def test_complete_keeps_capacity(self, session_factory, seed):
        booking = await _create(session_factory, seed, 5)

        async with session_factory() as db:
            completed = await BookingLedger(db).update_status(seed.business_id, booking.id, "completed")

        assert completed.status == BookingStatus.COMPLETED
        assert await _committed(session_factory, seed.session_id) == (5, 5)

    @pytest.mark.parametrize("target", [BookingStatus.CONFIRMED, BookingStatus.PENDING, BookingStatus.COMPLETED])
    async def test_cancelled_is_terminal(self, session_factory, seed, target):
        booking = await _create(session_factory, seed, 1)
        async with session_factory() as db:
            await BookingLedger(db).update_status(seed.business_id, booking.id, BookingStatus.CANCELLED)

        async with session_factory() as db:
            with pytest.raises(IllegalTransitionError):
                await BookingLedger(db).update_status(seed.business_id, booking.id, target)
        assert await _committed(session_factory, seed.session_id) == (0, 0)

    async def test_confirmed_cannot_return_to_pending(self, session_factory, seed):
        booking = await _create(session_factory, seed, 1)

        async with session_factory() as db:
            with pytest.raises(IllegalTransitionError) as exc_info:
                await BookingLedger(db).update_status(seed.business_id, booking.id, BookingStatus.PENDING)
        assert exc_info.value.current_status == "CONFIRMED"

    async def test_unknown_status_is_a_validation_error(self, session_factory, seed):
        booking = await _create(session_factory, seed, 1)

        async with session_factory() as db:
            with pytest.raises(ValidationError):
                await BookingLedger(db).update_status(seed.business_id, booking.id, "REFUNDED")


def test_transition_table_has_terminal_states():
    assert ALLOWED_TRANSITIONS[BookingStatus.CANCELLED] == set()
    assert ALLOWED_TRANSITIONS[BookingStatus.COMPLETED] == set()
    assert is_transition_allowed(BookingStatus.PENDING, BookingStatus.CONFIRMED)
    assert not is_transition_allowed(BookingStatus.CONFIRMED, BookingStatus.CONFIRMED)


class TestConcurrencyGuard:

    async def test_stale_counter_surfaces_conflict_after_one_retry(self, session_factory, seed, monkeypatch):
        # Counter says full while no booking rows exist, as if another writer
        # reserved the spots between the check and the write
        async with session_factory() as db:
            await db.execute(
                update(Session).where(Session.id == seed.session_id).values(committed_quantity=10)
            )
            await db.commit()

        async with session_factory() as db:
            ledger = BookingLedger(db)
            calls = []
            original_reserve = ledger.gate.reserve

            async def counting_reserve(*args, **kwargs):
                calls.append(args)
                return await original_reserve(*args, **kwargs)

            monkeypatch.setattr(ledger.gate, "reserve", counting_reserve)

            with pytest.raises(ConflictError) as exc_info:
                await ledger.create_booking(seed.business_id, seed.session_id, seed.guest_id, 1)

        assert len(calls) == 2
        assert exc_info.value.retry_after == 1
        async with session_factory() as db:
            count = (await db.execute(select(func.count(Booking.id)))).scalar_one()
        assert count == 0

    async def test_conflict_is_retried_transparently(self, session_factory, seed, monkeypatch):
        async with session_factory() as db:
            ledger = BookingLedger(db)
            original_reserve = ledger.gate.reserve
            attempts = []

            async def flaky_reserve(*args, **kwargs):
                attempts.append(args)
                if len(attempts) == 1:
                    raise ConflictError("Session was modified by another booking")
                return await original_reserve(*args, **kwargs)

            monkeypatch.setattr(ledger.gate, "reserve", flaky_reserve)
            booking = await ledger.create_booking(seed.business_id, seed.session_id, seed.guest_id, 2)

        assert len(attempts) == 2
        assert booking.quantity == 2
        assert await _committed(session_factory, seed.session_id) == (2, 2)

    async def test_occupancy_is_conserved_across_operations(self, session_factory, seed):
        a = await _create(session_factory, seed, 3, [seed.wine_id])
        b = await _create(session_factory, seed, 2)
        c = await _create(session_factory, seed, 4)

        async with session_factory() as db:
            await BookingLedger(db).update_quantity(seed.business_id, a.id, 1)
        async with session_factory() as db:
            await BookingLedger(db).update_status(seed.business_id, b.id, BookingStatus.CANCELLED)
        async with session_factory() as db:
            await BookingLedger(db).update_quantity(seed.business_id, c.id, 9)
        with pytest.raises(CapacityExceededError):
            await _create(session_factory, seed, 1)

        counter, held = await _committed(session_factory, seed.session_id)
        assert counter == held == 10

    async def test_racing_creates_never_overbook(self, file_session_factory, file_seed):
        await _create(file_session_factory, file_seed, 9)

        async def book_last_spot():
            async with file_session_factory() as db:
                return await BookingLedger(db).create_booking(
                    file_seed.business_id, file_seed.session_id, file_seed.guest_id, 1
                )

        outcomes = await asyncio.gather(*(book_last_spot() for _ in range(5)), return_exceptions=True)

        created = [o for o in outcomes if not isinstance(o, BaseException)]
        rejected = [o for o in outcomes if isinstance(o, BaseException)]
        assert len(created) == 1
        assert all(isinstance(e, (CapacityExceededError, ConflictError, StorageError)) for e in rejected)

        counter, held = await _committed(file_session_factory, file_seed.session_id)
        assert counter == held == 10

    async def test_failed_notification_keeps_booking(self, session_factory, seed, monkeypatch, caplog):
        monkeypatch.setattr(get_settings(), "notifications_enabled", True)

        def broker_down(*args, **kwargs):
            raise ConnectionError("broker unreachable")

        monkeypatch.setattr(notification_tasks.send_booking_confirmation_task, "delay", broker_down)

        ledger_logger = logging.getLogger("experience_booking_platform.services.booking_ledger")
        ledger_logger.addHandler(caplog.handler)
        try:
            booking = await _create(session_factory, seed, 2)
        finally:
            ledger_logger.removeHandler(caplog.handler)

        async with session_factory() as db:
            stored = await BookingQueryService(db).get_booking(seed.business_id, booking.id)
        assert stored.status == BookingStatus.CONFIRMED
        assert await _committed(session_factory, seed.session_id) == (2, 2)

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert any("notification" in r.getMessage() for r in warnings)


class TestCombinedUpdate:

    async def test_illegal_status_rolls_back_quantity(self, session_factory, seed):
        booking = await _create(session_factory, seed, 2)
        async with session_factory() as db:
            await BookingLedger(db).update_status(seed.business_id, booking.id, BookingStatus.COMPLETED)

        async with session_factory() as db:
            with pytest.raises(IllegalTransitionError):
                await BookingLedger(db).update_booking(
                    seed.business_id, booking.id, quantity=5, status=BookingStatus.PENDING
                )

        async with session_factory() as db:
            stored = await BookingQueryService(db).get_booking(seed.business_id, booking.id)
        assert stored.quantity == 2
        assert stored.total == Decimal("38.00")
        assert stored.status == BookingStatus.COMPLETED
        assert await _committed(session_factory, seed.session_id) == (2, 2)

    async def test_capacity_rejection_keeps_status(self, session_factory, seed):
        booking = await _create(session_factory, seed, 2)

        async with session_factory() as db:
            with pytest.raises(CapacityExceededError):
                await BookingLedger(db).update_booking(
                    seed.business_id, booking.id, quantity=11, status=BookingStatus.COMPLETED
                )

        async with session_factory() as db:
            stored = await BookingQueryService(db).get_booking(seed.business_id, booking.id)
        assert stored.status == BookingStatus.CONFIRMED
        assert stored.quantity == 2

    async def test_resize_and_cancel_together(self, session_factory, seed):
        booking = await _create(session_factory, seed, 3)

        async with session_factory() as db:
            updated = await BookingLedger(db).update_booking(
                seed.business_id, booking.id, quantity=5, status=BookingStatus.CANCELLED
            )

        assert updated.quantity == 5
        assert updated.status == BookingStatus.CANCELLED
        assert await _committed(session_factory, seed.session_id) == (0, 0)

    async def test_same_status_alongside_quantity_is_ignored(self, session_factory, seed):
        booking = await _create(session_factory, seed, 2)

        async with session_factory() as db:
            updated = await BookingLedger(db).update_booking(
                seed.business_id, booking.id, quantity=4, status=BookingStatus.CONFIRMED
            )

        assert updated.quantity == 4
        assert updated.status == BookingStatus.CONFIRMED
        assert await _committed(session_factory, seed.session_id) == (4, 4)

    async def test_requires_a_change(self, session_factory, seed):
        booking = await _create(session_factory, seed, 1)

        async with session_factory() as db:
            with pytest.raises(ValidationError):
                await BookingLedger(db).update_booking(seed.business_id, booking.id)


class TestCheckIn:

    async def test_records_first_arrival(self, session_factory, seed):
        booking = await _create(session_factory, seed, 2)
        assert booking.checked_in is False

        async with session_factory() as db:
            first = await BookingLedger(db).check_in(seed.business_id, booking.id)
        async with session_factory() as db:
            again = await BookingLedger(db).check_in(seed.business_id, booking.id)

        assert first.checked_in is True
        assert first.checked_in_at is not None
        assert again.checked_in_at == first.checked_in_at
        assert await _committed(session_factory, seed.session_id) == (2, 2)

    async def test_cancelled_booking_cannot_check_in(self, session_factory, seed):
        booking = await _create(session_factory, seed, 1)
        async with session_factory() as db:
            await BookingLedger(db).update_status(seed.business_id, booking.id, BookingStatus.CANCELLED)

        async with session_factory() as db:
            with pytest.raises(BookingCancelledError):
                await BookingLedger(db).check_in(seed.business_id, booking.id)

    async def test_other_business_cannot_check_in(self, session_factory, seed):
        booking = await _create(session_factory, seed, 1)

        async with session_factory() as db:
            with pytest.raises(BookingNotFoundError):
                await BookingLedger(db).check_in(seed.other_business_id, booking.id)
