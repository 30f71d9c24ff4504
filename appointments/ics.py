"""Minimal iCalendar (RFC 5545) invites attached to booking emails."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from appointments.timeutils import ensure_utc, utc_now

PRODID = "-//appointments//booking engine//EN"


def _ics_timestamp(dt: datetime) -> str:
    return ensure_utc(dt).strftime("%Y%m%dT%H%M%SZ")


def _escape(text: str) -> str:
    return (
        str(text or "")
        .replace("\\", "\\\\")
        .replace("\n", "\\n")
        .replace(",", "\\,")
        .replace(";", "\\;")
    )


def build_ics(
    uid: str,
    start: datetime,
    end: datetime,
    summary: str,
    description: str = "",
    organizer: Optional[str] = None,
    attendees: Optional[list[tuple[str, str]]] = None,
    method: str = "REQUEST",
    sequence: int = 0,
    stamp: Optional[datetime] = None,
) -> str:
    """Render a single-event VCALENDAR.

    ``attendees`` is a list of ``(name, email)`` pairs.  Use
    ``method="CANCEL"`` for cancellations; bump ``sequence`` on reschedule so
    clients replace the earlier invite.
    """
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        f"METHOD:{method}",
        "BEGIN:VEVENT",
        f"UID:{uid}",
        f"SEQUENCE:{sequence}",
        f"DTSTAMP:{_ics_timestamp(stamp or utc_now())}",
        f"DTSTART:{_ics_timestamp(start)}",
        f"DTEND:{_ics_timestamp(end)}",
        f"SUMMARY:{_escape(summary)}",
        f"DESCRIPTION:{_escape(description)}",
    ]
    if method == "CANCEL":
        lines.append("STATUS:CANCELLED")
    if organizer:
        lines.append(f"ORGANIZER:mailto:{organizer}")
    for name, email in attendees or []:
        lines.append(f"ATTENDEE;CN={_escape(name or email)}:mailto:{email}")
    lines += ["END:VEVENT", "END:VCALENDAR"]
    return "\r\n".join(lines) + "\r\n"
