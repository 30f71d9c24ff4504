"""Calendar provider abstractions and implementations."""

from .base import BusyInterval, CalendarEvent, CalendarProvider
from .memory import InMemoryCalendarProvider

__all__ = [
    "BusyInterval",
    "CalendarEvent",
    "CalendarProvider",
    "InMemoryCalendarProvider",
]
