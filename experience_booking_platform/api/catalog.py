"""
FastAPI routes for experiences, events, sessions and add-ons.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas.booking import SessionAvailabilityResponse
from ..schemas.catalog import (
    AddOnCreate,
    AddOnResponse,
    AddOnUpdate,
    EventAddOnListResponse,
    EventCreate,
    EventResponse,
    ExperienceCreate,
    ExperienceResponse,
    SessionCreate,
    SessionResponse,
    SessionUpdate,
)
from ..schemas.common import SuccessResponse
from ..services.booking_queries import BookingQueryService
from ..services.catalog_service import CatalogService
from ..utils.dependencies import get_current_business_id

router = APIRouter(tags=["catalog"])


# Experiences

@router.post("/experiences", response_model=ExperienceResponse, status_code=status.HTTP_201_CREATED)
async def create_experience(
    data: ExperienceCreate,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    return await CatalogService(db).create_experience(business_id, data)


@router.delete("/experiences/{experience_id}", response_model=SuccessResponse)
async def delete_experience(
    experience_id: UUID,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """Delete an experience. Refused while any of its events has bookings."""
    await CatalogService(db).delete_experience(business_id, experience_id)
    return SuccessResponse(message="Experience deleted")


# Events

@router.post("/events", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    data: EventCreate,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    return await CatalogService(db).create_event(business_id, data)


@router.delete("/events/{event_id}", response_model=SuccessResponse)
async def delete_event(
    event_id: UUID,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """Delete an event and its sessions. Refused when any booking references it."""
    await CatalogService(db).delete_event(business_id, event_id)
    return SuccessResponse(message="Event deleted")


@router.get("/events/{event_id}/addons", response_model=EventAddOnListResponse)
async def list_event_add_ons(
    event_id: UUID,
    active_only: bool = Query(True, description="Only add-ons selectable for new bookings"),
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    add_ons = await CatalogService(db).list_event_add_ons(business_id, event_id, active_only=active_only)
    return EventAddOnListResponse(
        event_id=event_id,
        add_ons=[AddOnResponse.model_validate(add_on) for add_on in add_ons],
    )


@router.put("/events/{event_id}/addons/{add_on_id}", response_model=SuccessResponse)
async def associate_add_on(
    event_id: UUID,
    add_on_id: UUID,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    await CatalogService(db).associate_add_on(business_id, event_id, add_on_id)
    return SuccessResponse(message="Add-on offered with event")


@router.delete("/events/{event_id}/addons/{add_on_id}", response_model=SuccessResponse)
async def dissociate_add_on(
    event_id: UUID,
    add_on_id: UUID,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    await CatalogService(db).dissociate_add_on(business_id, event_id, add_on_id)
    return SuccessResponse(message="Add-on no longer offered with event")


# Sessions

@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    data: SessionCreate,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    return await CatalogService(db).create_session(business_id, data)


@router.patch("/sessions/{session_id}", response_model=SessionResponse)
async def update_session_times(
    session_id: UUID,
    data: SessionUpdate,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """Reschedule a session that nobody has booked yet."""
    return await CatalogService(db).update_session_times(business_id, session_id, data)


@router.delete("/sessions/{session_id}", response_model=SuccessResponse)
async def delete_session(
    session_id: UUID,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    await CatalogService(db).delete_session(business_id, session_id)
    return SuccessResponse(message="Session deleted")


@router.get("/sessions/{session_id}/availability", response_model=SessionAvailabilityResponse)
async def get_session_availability(
    session_id: UUID,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """Capacity, committed tickets and remaining spots for a session."""
    return await BookingQueryService(db).get_session_availability(business_id, session_id)


# Add-ons

@router.post("/addons", response_model=AddOnResponse, status_code=status.HTTP_201_CREATED)
async def create_add_on(
    data: AddOnCreate,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    return await CatalogService(db).create_add_on(business_id, data)


@router.patch("/addons/{add_on_id}", response_model=AddOnResponse)
async def update_add_on(
    add_on_id: UUID,
    data: AddOnUpdate,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """Update an add-on. Existing bookings keep the price they were charged."""
    return await CatalogService(db).update_add_on(business_id, add_on_id, data)


@router.delete("/addons/{add_on_id}", response_model=SuccessResponse)
async def delete_add_on(
    add_on_id: UUID,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """Delete an add-on nobody has bought; otherwise deactivate it instead."""
    await CatalogService(db).delete_add_on(business_id, add_on_id)
    return SuccessResponse(message="Add-on deleted")
