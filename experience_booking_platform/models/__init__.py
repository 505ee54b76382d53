"""
Database models for the Experience Booking Platform.
"""

from .base import Base
from .business import Business
from .experience import Experience
from .event import Event
from .session import Session
from .guest import Guest
from .add_on import AddOn, EventAddOn
from .booking import Booking, BookingStatus
from .booking_item import BookingItem, BookingItemType

__all__ = [
    "Base",
    "Business",
    "Experience",
    "Event",
    "Session",
    "Guest",
    "AddOn",
    "EventAddOn",
    "Booking",
    "BookingStatus",
    "BookingItem",
    "BookingItemType",
]
