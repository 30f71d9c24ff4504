"""Abstract base class for calendar providers.

Defines the interface the booking engine uses to read busy intervals and to
mirror bookings as external events.  Any calendar backend (Google, Outlook,
etc.) implements this ABC.  Every call may fail; callers treat failures as
"calendar unavailable".
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class BusyInterval:
    """A time range during which the host is unavailable."""

    start: datetime
    end: datetime


@dataclass
class CalendarEvent:
    """Represents a calendar event to be created or updated."""

    summary: str
    start: datetime
    end: datetime
    description: str = ""
    attendees: list[str] = field(default_factory=list)  # email addresses
    time_zone: str = "UTC"


class CalendarProvider(ABC):
    """Abstract calendar backend."""

    @abstractmethod
    async def list_busy(
        self,
        calendar_ids: list[str],
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        """Return busy intervals across ``calendar_ids`` in ``[time_min, time_max)``.

        Intervals may overlap each other and are not sorted.
        """

    @abstractmethod
    async def insert_event(self, calendar_id: str, event: CalendarEvent) -> str:
        """Create an event and return its provider-specific id."""

    @abstractmethod
    async def update_event(
        self, calendar_id: str, event_id: str, event: CalendarEvent
    ) -> None:
        """Replace the time and details of an existing event."""

    @abstractmethod
    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete / cancel an event."""
