"""Google Calendar provider implementation.

Uses a Google Cloud service account to interact with the Calendar API v3.
The service account JSON key path is read from the ``GOOGLE_SERVICE_ACCOUNT_JSON``
environment variable when not passed explicitly.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from functools import partial
from typing import Any

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build

from appointments.errors import CollaboratorUnavailable

from .base import BusyInterval, CalendarEvent, CalendarProvider

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]


class GoogleCalendarProvider(CalendarProvider):
    """CalendarProvider backed by Google Calendar API v3."""

    def __init__(self, service_account_path: str | None = None) -> None:
        sa_path = service_account_path or os.environ.get(
            "GOOGLE_SERVICE_ACCOUNT_JSON", ""
        )
        if not sa_path:
            raise ValueError(
                "Google service account JSON path must be provided via "
                "constructor argument or GOOGLE_SERVICE_ACCOUNT_JSON env var."
            )
        self._credentials = Credentials.from_service_account_file(
            sa_path, scopes=SCOPES
        )
        self._service = build(
            "calendar", "v3", credentials=self._credentials
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_in_executor(self, func, *args, **kwargs) -> Any:
        """Run a synchronous Google API call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, partial(func, *args, **kwargs)
        )

    @staticmethod
    def _to_rfc3339(dt: datetime) -> str:
        """Convert a datetime to an RFC 3339 string with timezone."""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.isoformat()

    @staticmethod
    def _parse_rfc3339(value: str) -> datetime:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))

    def _event_body(self, event: CalendarEvent) -> dict[str, Any]:
        body: dict[str, Any] = {
            "summary": event.summary,
            "start": {
                "dateTime": self._to_rfc3339(event.start),
                "timeZone": event.time_zone,
            },
            "end": {
                "dateTime": self._to_rfc3339(event.end),
                "timeZone": event.time_zone,
            },
        }
        if event.description:
            body["description"] = event.description
        if event.attendees:
            body["attendees"] = [
                {"email": addr} for addr in event.attendees
            ]
        return body

    # ------------------------------------------------------------------
    # CalendarProvider interface
    # ------------------------------------------------------------------

    async def list_busy(
        self,
        calendar_ids: list[str],
        time_min: datetime,
        time_max: datetime,
    ) -> list[BusyInterval]:
        """Query the freebusy API across every selected calendar.

        Raises CollaboratorUnavailable when any selected calendar reports
        errors or is missing from the response, since its busy time is then
        unknown.
        """
        body = {
            "timeMin": self._to_rfc3339(time_min),
            "timeMax": self._to_rfc3339(time_max),
            "items": [{"id": cal_id} for cal_id in calendar_ids],
        }

        response = await self._run_in_executor(
            self._service.freebusy().query(body=body).execute
        )

        calendars = response.get("calendars", {})
        busy: list[BusyInterval] = []
        failed: list[str] = []
        for cal_id in calendar_ids:
            cal = calendars.get(cal_id)
            if cal is None or cal.get("errors"):
                # e.g. notFound / forbidden
                logger.warning(
                    "Freebusy errors for calendar %s: %s",
                    cal_id, cal.get("errors") if cal else "missing from response",
                )
                failed.append(cal_id)
                continue
            for interval in cal.get("busy", []):
                busy.append(
                    BusyInterval(
                        start=self._parse_rfc3339(interval["start"]),
                        end=self._parse_rfc3339(interval["end"]),
                    )
                )
        if failed:
            raise CollaboratorUnavailable(
                f"Free/busy unavailable for calendar(s): {', '.join(failed)}"
            )
        return busy

    async def insert_event(self, calendar_id: str, event: CalendarEvent) -> str:
        """Insert an event into the Google Calendar.

        Sends email invitations to any attendees listed on the event.
        """
        result = await self._run_in_executor(
            self._service.events()
            .insert(
                calendarId=calendar_id,
                body=self._event_body(event),
                sendUpdates="all",
            )
            .execute
        )

        logger.info("Created event %s on calendar %s", result["id"], calendar_id)
        return result["id"]

    async def update_event(
        self, calendar_id: str, event_id: str, event: CalendarEvent
    ) -> None:
        await self._run_in_executor(
            self._service.events()
            .update(
                calendarId=calendar_id,
                eventId=event_id,
                body=self._event_body(event),
                sendUpdates="all",
            )
            .execute
        )
        logger.info("Updated event %s on calendar %s", event_id, calendar_id)

    async def delete_event(self, calendar_id: str, event_id: str) -> None:
        """Delete an event from Google Calendar."""
        await self._run_in_executor(
            self._service.events()
            .delete(calendarId=calendar_id, eventId=event_id, sendUpdates="all")
            .execute
        )
        logger.info("Deleted event %s on calendar %s", event_id, calendar_id)
