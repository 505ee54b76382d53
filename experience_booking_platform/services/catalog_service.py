"""
Catalog service for experiences, events, sessions, add-ons and guests.

Deletion is refused for anything bookings still reference; add-ons can be
deactivated instead.
"""

import logging
from typing import Awaitable, Callable, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..cache import CacheInvalidator
from ..models.add_on import AddOn, EventAddOn
from ..models.booking import Booking
from ..models.booking_item import BookingItem
from ..models.event import Event
from ..models.experience import Experience
from ..models.guest import Guest
from ..models.session import Session
from ..schemas.catalog import (
    AddOnCreate,
    AddOnUpdate,
    EventCreate,
    ExperienceCreate,
    GuestCreate,
    SessionCreate,
    SessionUpdate,
)
from ..utils.exceptions import (
    AddOnNotFoundError,
    EventNotFoundError,
    ExperienceNotFoundError,
    HasDependentsError,
    SessionNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class CatalogService:
    """Service class for catalog management within one business."""

    def __init__(self, db: AsyncSession):
        """Initialize the catalog service with database session."""
        self.db = db

    # Experiences

    async def create_experience(self, business_id: UUID, data: ExperienceCreate) -> Experience:
        experience = Experience(
            business_id=business_id,
            name=data.name,
            slug=data.slug,
            description=data.description,
            base_price=data.base_price,
            duration_minutes=data.duration_minutes,
            max_capacity=data.max_capacity,
        )
        self.db.add(experience)
        await self._commit(f"Experience slug '{data.slug}' already exists", "slug")
        logger.info(f"Experience {experience.id} created for business {business_id}")
        return experience

    async def get_experience(self, business_id: UUID, experience_id: UUID) -> Experience:
        result = await self.db.execute(
            select(Experience).where(
                Experience.id == experience_id,
                Experience.business_id == business_id
            )
        )
        experience = result.scalar_one_or_none()
        if not experience:
            raise ExperienceNotFoundError(str(experience_id))
        return experience

    async def delete_experience(self, business_id: UUID, experience_id: UUID) -> None:
        """Delete an experience; refused while any of its events has bookings."""
        experience = await self.get_experience(business_id, experience_id)

        booking_count = await self._count_bookings(Event.experience_id == experience_id)
        if booking_count:
            raise HasDependentsError("experience", str(experience_id), booking_count)

        events = (await self.db.execute(
            select(Event).where(Event.experience_id == experience_id)
        )).scalars().all()
        for event in events:
            await self._delete_event_tree(event)

        await self.db.delete(experience)
        await self._commit_delete(
            "experience", experience_id, lambda: self._count_bookings(Event.experience_id == experience_id)
        )
        logger.info(f"Experience {experience_id} deleted")

    # Events

    async def create_event(self, business_id: UUID, data: EventCreate) -> Event:
        await self.get_experience(business_id, data.experience_id)

        event = Event(
            experience_id=data.experience_id,
            name=data.name,
            slug=data.slug,
            description=data.description,
            start_date=data.start_date,
            end_date=data.end_date,
            max_capacity=data.max_capacity,
            base_price=data.base_price,
        )
        self.db.add(event)
        await self._commit("Failed to create event")
        logger.info(f"Event {event.id} created under experience {data.experience_id}")
        return event

    async def get_event(self, business_id: UUID, event_id: UUID) -> Event:
        result = await self.db.execute(
            select(Event)
            .join(Event.experience)
            .where(Event.id == event_id, Experience.business_id == business_id)
        )
        event = result.scalar_one_or_none()
        if not event:
            raise EventNotFoundError(str(event_id))
        return event

    async def delete_event(self, business_id: UUID, event_id: UUID) -> None:
        """
        Delete an event and its sessions.

        Raises:
            HasDependentsError: When any booking, cancelled or not, references the event
        """
        event = await self.get_event(business_id, event_id)

        booking_count = await self._count_bookings(Session.event_id == event_id)
        if booking_count:
            raise HasDependentsError("event", str(event_id), booking_count)

        await self._delete_event_tree(event)
        await self._commit_delete(
            "event", event_id, lambda: self._count_bookings(Session.event_id == event_id)
        )
        logger.info(f"Event {event_id} deleted")

    # Sessions

    async def create_session(self, business_id: UUID, data: SessionCreate) -> Session:
        await self.get_event(business_id, data.event_id)

        session = Session(
            event_id=data.event_id,
            start_time=data.start_time,
            end_time=data.end_time,
            max_capacity=data.max_capacity,
            base_price=data.base_price,
            committed_quantity=0,
        )
        self.db.add(session)
        await self._commit("Failed to create session")
        logger.info(f"Session {session.id} created for event {data.event_id}")
        return session

    async def get_session(self, business_id: UUID, session_id: UUID, lock: bool = False) -> Session:
        stmt = (
            select(Session)
            .join(Session.event)
            .join(Event.experience)
            .where(Session.id == session_id, Experience.business_id == business_id)
            .options(selectinload(Session.event).selectinload(Event.experience))
        )
        if lock:
            # Bookings lock the same row, so the count below cannot go stale
            stmt = stmt.with_for_update(of=Session)
        result = await self.db.execute(stmt)
        session = result.scalar_one_or_none()
        if not session:
            raise SessionNotFoundError(str(session_id))
        return session

    async def update_session_times(self, business_id: UUID, session_id: UUID, data: SessionUpdate) -> Session:
        """Reschedule a session; refused once anyone has booked it."""
        session = await self.get_session(business_id, session_id, lock=True)

        booking_count = await self._count_bookings(Booking.session_id == session_id)
        if booking_count:
            raise HasDependentsError(
                "session",
                str(session_id),
                booking_count,
                suggestions=["Create a new session instead"]
            )

        session.start_time = data.start_time
        session.end_time = data.end_time
        await self.db.commit()
        await CacheInvalidator.invalidate_session_caches(str(session_id))
        return session

    async def delete_session(self, business_id: UUID, session_id: UUID) -> None:
        """Delete a session; refused when any booking references it."""
        session = await self.get_session(business_id, session_id, lock=True)

        booking_count = await self._count_bookings(Booking.session_id == session_id)
        if booking_count:
            raise HasDependentsError("session", str(session_id), booking_count)

        await self.db.delete(session)
        await self._commit_delete(
            "session", session_id, lambda: self._count_bookings(Booking.session_id == session_id)
        )
        await CacheInvalidator.invalidate_session_caches(str(session_id))
        logger.info(f"Session {session_id} deleted")

    # Add-ons

    async def create_add_on(self, business_id: UUID, data: AddOnCreate) -> AddOn:
        await self._ensure_unique_add_on_name(business_id, data.name)

        add_on = AddOn(
            business_id=business_id,
            name=data.name,
            description=data.description,
            price=data.price,
            is_active=data.is_active,
            sort_order=data.sort_order,
        )
        self.db.add(add_on)
        await self._commit(f"Add-on '{data.name}' already exists", "name")
        logger.info(f"Add-on {add_on.id} created for business {business_id}")
        return add_on

    async def get_add_on(self, business_id: UUID, add_on_id: UUID) -> AddOn:
        result = await self.db.execute(
            select(AddOn).where(AddOn.id == add_on_id, AddOn.business_id == business_id)
        )
        add_on = result.scalar_one_or_none()
        if not add_on:
            raise AddOnNotFoundError(str(add_on_id))
        return add_on

    async def update_add_on(self, business_id: UUID, add_on_id: UUID, data: AddOnUpdate) -> AddOn:
        """
        Update an add-on.

        Price changes only affect future bookings; booking items keep the
        unit price captured when they were created.
        """
        add_on = await self.get_add_on(business_id, add_on_id)

        update_data = data.model_dump(exclude_unset=True)
        if "name" in update_data and update_data["name"] != add_on.name:
            await self._ensure_unique_add_on_name(business_id, update_data["name"])

        for field, value in update_data.items():
            if value is None and field != "description":
                continue
            setattr(add_on, field, value)

        await self._commit(f"Add-on '{add_on.name}' already exists", "name")
        logger.info(f"Add-on {add_on_id} updated: {sorted(update_data)}")
        return add_on

    async def delete_add_on(self, business_id: UUID, add_on_id: UUID) -> None:
        """
        Delete an add-on.

        Raises:
            HasDependentsError: When booking items reference it; deactivate it instead
        """
        add_on = await self.get_add_on(business_id, add_on_id)

        usage = await self._count_add_on_usage(add_on_id)
        if usage:
            raise HasDependentsError(
                "add_on",
                str(add_on_id),
                usage,
                suggestions=["Deactivate the add-on instead"]
            )

        await self.db.delete(add_on)
        await self._commit_delete(
            "add_on", add_on_id, lambda: self._count_add_on_usage(add_on_id)
        )
        logger.info(f"Add-on {add_on_id} deleted")

    async def associate_add_on(self, business_id: UUID, event_id: UUID, add_on_id: UUID) -> EventAddOn:
        """Offer an add-on with an event."""
        await self.get_event(business_id, event_id)
        await self.get_add_on(business_id, add_on_id)

        existing = (await self.db.execute(
            select(EventAddOn).where(
                EventAddOn.event_id == event_id,
                EventAddOn.add_on_id == add_on_id
            )
        )).scalar_one_or_none()
        if existing:
            raise ValidationError(
                "Add-on is already associated with this event",
                field_errors={"add_on_id": ["already associated"]}
            )

        link = EventAddOn(event_id=event_id, add_on_id=add_on_id)
        self.db.add(link)
        await self._commit("Add-on is already associated with this event", "add_on_id")
        return link

    async def dissociate_add_on(self, business_id: UUID, event_id: UUID, add_on_id: UUID) -> None:
        """Stop offering an add-on with an event; existing booking items are untouched."""
        await self.get_event(business_id, event_id)

        link = (await self.db.execute(
            select(EventAddOn).where(
                EventAddOn.event_id == event_id,
                EventAddOn.add_on_id == add_on_id
            )
        )).scalar_one_or_none()
        if not link:
            raise AddOnNotFoundError(str(add_on_id))

        await self.db.delete(link)
        await self.db.commit()

    async def list_event_add_ons(
        self,
        business_id: UUID,
        event_id: UUID,
        active_only: bool = True
    ) -> List[AddOn]:
        """Add-ons offered with an event, ordered for display."""
        await self.get_event(business_id, event_id)

        stmt = (
            select(AddOn)
            .join(EventAddOn, EventAddOn.add_on_id == AddOn.id)
            .where(EventAddOn.event_id == event_id, AddOn.business_id == business_id)
            .order_by(AddOn.sort_order, AddOn.name)
        )
        if active_only:
            stmt = stmt.where(AddOn.is_active.is_(True))

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    # Guests

    async def upsert_guest(self, business_id: UUID, data: GuestCreate) -> Guest:
        """Create a guest or refresh the details of the one with the same email."""
        email = data.email.lower()
        guest = (await self.db.execute(
            select(Guest).where(Guest.business_id == business_id, Guest.email == email)
        )).scalar_one_or_none()

        if guest is None:
            guest = Guest(business_id=business_id, email=email)
            self.db.add(guest)

        guest.first_name = data.first_name
        guest.last_name = data.last_name
        guest.phone = data.phone
        guest.zip_code = data.zip_code
        guest.marketing_opt_in = data.marketing_opt_in

        await self._commit(f"Guest {email} already exists", "email")
        return guest

    # Private helper methods

    async def _count_bookings(self, condition) -> int:
        """Count bookings of any status matching a condition on the session chain."""
        stmt = (
            select(func.count(Booking.id))
            .join(Booking.session)
            .join(Session.event)
            .where(condition)
        )
        return (await self.db.execute(stmt)).scalar() or 0

    async def _count_add_on_usage(self, add_on_id: UUID) -> int:
        stmt = select(func.count(BookingItem.id)).where(BookingItem.add_on_id == add_on_id)
        return (await self.db.execute(stmt)).scalar() or 0

    async def _delete_event_tree(self, event: Event) -> None:
        sessions = (await self.db.execute(
            select(Session).where(Session.event_id == event.id)
        )).scalars().all()
        for session in sessions:
            await self.db.delete(session)
        links = (await self.db.execute(
            select(EventAddOn).where(EventAddOn.event_id == event.id)
        )).scalars().all()
        for link in links:
            await self.db.delete(link)
        await self.db.delete(event)

    async def _ensure_unique_add_on_name(self, business_id: UUID, name: str) -> None:
        existing = (await self.db.execute(
            select(AddOn.id).where(AddOn.business_id == business_id, AddOn.name == name)
        )).scalar_one_or_none()
        if existing:
            raise ValidationError(
                f"Add-on '{name}' already exists",
                field_errors={"name": ["must be unique within the business"]}
            )

    async def _commit(self, conflict_message: str, field: Optional[str] = None) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Integrity error in catalog write: {e}")
            raise ValidationError(
                conflict_message,
                field_errors={field: ["conflicts with an existing record"]} if field else None
            )

    async def _commit_delete(
        self,
        resource_type: str,
        resource_id: UUID,
        count_dependents: Callable[[], Awaitable[int]]
    ) -> None:
        """Commit a delete, reporting a booking that slipped in after the check as a dependent."""
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Delete of {resource_type} {resource_id} hit a new booking: {e}")
            raise HasDependentsError(resource_type, str(resource_id), await count_dependents()) from e
