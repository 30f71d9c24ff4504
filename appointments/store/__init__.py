"""Persistence abstractions and implementations."""

from .base import BookingStore, TokenMarker
from .memory import InMemoryBookingStore

__all__ = ["BookingStore", "InMemoryBookingStore", "TokenMarker"]
