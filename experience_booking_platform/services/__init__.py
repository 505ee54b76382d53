"""Business logic services for the Experience Booking Platform."""

from .booking_ledger import BookingLedger
from .booking_queries import BookingQueryService
from .capacity_gate import CapacityDecision, CapacityGate
from .catalog_service import CatalogService
from .notification_service import NotificationService

__all__ = [
    "BookingLedger",
    "BookingQueryService",
    "CapacityDecision",
    "CapacityGate",
    "CatalogService",
    "NotificationService",
]
