"""In-process calendar backend for local development and tests."""

from __future__ import annotations

import logging
from datetime import datetime

from .base import BusyInterval, CalendarEvent, CalendarProvider

logger = logging.getLogger(__name__)


class InMemoryCalendarProvider(CalendarProvider):
    """Keeps events per calendar in dicts; extra busy blocks can be seeded."""

    def __init__(self, busy: dict[str, list[BusyInterval]] | None = None) -> None:
        self._busy: dict[str, list[BusyInterval]] = {
            cal_id: list(intervals) for cal_id, intervals in (busy or {}).items()
        }
        self._events: dict[str, dict[str, CalendarEvent]] = {}
        self._next_id = 1

    def add_busy(self, calendar_id: str, start: datetime, end: datetime) -> None:
        self._busy.setdefault(calendar_id, []).append(BusyInterval(start=start, end=end))

    def events(self, calendar_id: str) -> dict[str, CalendarEvent]:
        return dict(self._events.get(calendar_id, {}))

    async def list_busy(
        self,
        calendar_ids: list[str],
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        busy: list[BusyInterval] = []
        for cal_id in calendar_ids:
            candidates = list(self._busy.get(cal_id, []))
            candidates.extend(
                BusyInterval(start=e.start, end=e.end)
                for e in self._events.get(cal_id, {}).values()
            )
            busy.extend(b for b in candidates if b.start < time_max and time_min < b.end)
        return busy

    async def insert_event(self, calendar_id: str, event: CalendarEvent) -> str:
        event_id = f"mem_event_{self._next_id}"
        self._next_id += 1
        self._events.setdefault(calendar_id, {})[event_id] = event
        logger.info("In-memory event %s created on %s", event_id, calendar_id)
        return event_id

    async def update_event(
        self, calendar_id: str, event_id: str, event: CalendarEvent
    ) -> None:
        events = self._events.get(calendar_id, {})
        if event_id not in events:
            raise KeyError(f"Unknown event {event_id} on calendar {calendar_id}")
        events[event_id] = event

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        events = self._events.get(calendar_id, {})
        if events.pop(event_id, None) is None:
            raise KeyError(f"Unknown event {event_id} on calendar {calendar_id}")
