"""
FastAPI routes for creating, changing and listing bookings.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models.booking import BookingStatus
from ..schemas.booking import (
    BookingCreateRequest,
    BookingListResponse,
    BookingResponse,
    BookingStatsResponse,
    BookingUpdateRequest,
)
from ..schemas.common import ErrorResponse
from ..services.booking_ledger import BookingLedger
from ..services.booking_queries import BookingQueryService, MAX_PAGE_SIZE
from ..utils.dependencies import get_current_business_id

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bookings", tags=["bookings"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Rejected by a business rule"},
    404: {"model": ErrorResponse, "description": "Not found in this business"},
    409: {"model": ErrorResponse, "description": "Concurrent booking conflict, retry"},
}


@router.post(
    "",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES,
)
async def create_booking(
    booking_data: BookingCreateRequest,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Book tickets for a session.

    The booking is confirmed immediately. Add-ons must be active and offered
    for the session's event; each is charged once per ticket.
    """
    ledger = BookingLedger(db)
    booking = await ledger.create_booking(
        business_id=business_id,
        session_id=booking_data.session_id,
        guest_id=booking_data.guest_id,
        quantity=booking_data.quantity,
        add_on_ids=booking_data.add_on_ids,
    )
    return BookingResponse.from_booking(booking)


@router.get("", response_model=BookingListResponse)
async def list_bookings(
    experience_id: Optional[UUID] = Query(None, description="Filter by experience"),
    event_id: Optional[UUID] = Query(None, description="Filter by event"),
    booking_status: Optional[BookingStatus] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """List the business's bookings, newest first."""
    queries = BookingQueryService(db)
    bookings, total = await queries.list_bookings(
        business_id,
        experience_id=experience_id,
        event_id=event_id,
        status=booking_status,
        limit=limit,
        offset=offset,
    )
    return BookingListResponse(
        bookings=[BookingResponse.from_booking(booking) for booking in bookings],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/stats", response_model=BookingStatsResponse)
async def get_booking_stats(
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """Booking counts per status, tickets sold and revenue."""
    queries = BookingQueryService(db)
    return BookingStatsResponse(**await queries.get_booking_stats(business_id))


@router.get("/{booking_id}", response_model=BookingResponse, responses=ERROR_RESPONSES)
async def get_booking(
    booking_id: UUID,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """Get a booking with its line items."""
    queries = BookingQueryService(db)
    booking = await queries.get_booking(business_id, booking_id)
    return BookingResponse.from_booking(booking)


@router.patch("/{booking_id}", response_model=BookingResponse, responses=ERROR_RESPONSES)
async def update_booking(
    booking_id: UUID,
    update_data: BookingUpdateRequest,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Change a booking's quantity, status, or both.

    Both changes commit together or not at all. A status equal to the current
    one is ignored when sent together with a quantity.
    """
    ledger = BookingLedger(db)
    booking = await ledger.update_booking(
        business_id,
        booking_id,
        quantity=update_data.quantity,
        status=update_data.status,
    )
    return BookingResponse.from_booking(booking)


@router.post("/{booking_id}/check-in", response_model=BookingResponse, responses=ERROR_RESPONSES)
async def check_in_booking(
    booking_id: UUID,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """Record the guest's arrival. Cancelled bookings cannot check in."""
    ledger = BookingLedger(db)
    booking = await ledger.check_in(business_id, booking_id)
    return BookingResponse.from_booking(booking)
