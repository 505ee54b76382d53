"""
FastAPI routes for guests.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas.booking import BookingResponse
from ..schemas.catalog import GuestCreate, GuestDirectoryEntry, GuestResponse
from ..services.booking_queries import BookingQueryService, MAX_GUEST_SEARCH
from ..services.catalog_service import CatalogService
from ..utils.dependencies import get_current_business_id

router = APIRouter(prefix="/guests", tags=["guests"])


@router.get("", response_model=List[GuestDirectoryEntry])
async def list_guests(
    search: Optional[str] = Query(None, max_length=100, description="Matches first name, last name or email"),
    limit: int = Query(20, ge=1, le=MAX_GUEST_SEARCH),
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """Search the business's guests, ordered by last name."""
    queries = BookingQueryService(db)
    guests = await queries.list_guests(business_id, search=search, limit=limit)
    return [
        GuestDirectoryEntry.model_validate(guest).model_copy(update={"booking_count": count})
        for guest, count in guests
    ]


@router.post("", response_model=GuestResponse, status_code=status.HTTP_201_CREATED)
async def upsert_guest(
    guest_data: GuestCreate,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """Create a guest, or update the existing guest with the same email."""
    service = CatalogService(db)
    return await service.upsert_guest(business_id, guest_data)


@router.get("/{guest_id}/bookings", response_model=List[BookingResponse])
async def list_guest_bookings(
    guest_id: UUID,
    business_id: UUID = Depends(get_current_business_id),
    db: AsyncSession = Depends(get_db)
):
    """All bookings of a guest, newest first."""
    queries = BookingQueryService(db)
    bookings = await queries.list_guest_bookings(business_id, guest_id)
    return [BookingResponse.from_booking(booking) for booking in bookings]
