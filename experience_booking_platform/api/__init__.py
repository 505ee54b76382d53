"""API endpoints for the Experience Booking Platform."""

from fastapi import APIRouter
from .bookings import router as bookings_router
from .guests import router as guests_router
from .catalog import router as catalog_router

# Create main API router
api_router = APIRouter(prefix="/api/v1")

# Include all routers
api_router.include_router(bookings_router)
api_router.include_router(guests_router)
api_router.include_router(catalog_router)

__all__ = ["api_router"]
