"""Wall-clock ↔ instant conversion for host time zones.

All instants handled by the engine are timezone-aware UTC datetimes.  Local
wall-clock values ("09:30" on a given date) only exist at the edges, where a
host's working hours are turned into absolute instants.  The conversion looks
up the zone offset for that exact local date/time, so days that cross a
daylight-saving transition come out right.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from appointments.errors import ValidationError

WEEKDAY_KEYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

_HHMM_PATTERN = re.compile(r"^(\d{2}):(\d{2})$")


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def get_zone(time_zone: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising ValidationError for unknown names."""
    try:
        return ZoneInfo(time_zone)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown time zone: {time_zone!r}") from None


def parse_hhmm(value: str) -> tuple[int, int]:
    """Parse ``HH:MM`` into ``(hour, minute)``.

    ``24:00`` is accepted and means midnight at the end of the day.
    """
    match = _HHMM_PATTERN.match(value or "")
    if not match:
        raise ValidationError(f"Invalid time {value!r}, expected HH:MM")
    hour, minute = int(match.group(1)), int(match.group(2))
    if minute > 59 or hour > 24 or (hour == 24 and minute != 0):
        raise ValidationError(f"Invalid time {value!r}, expected HH:MM")
    return hour, minute


def local_to_utc(day: date, hhmm: str, time_zone: str) -> datetime:
    """Convert wall-clock ``hhmm`` on ``day`` in ``time_zone`` to a UTC instant."""
    hour, minute = parse_hhmm(hhmm)
    zone = get_zone(time_zone)
    if hour == 24:
        day, hour = day + timedelta(days=1), 0
    local = datetime.combine(day, time(hour, minute), tzinfo=zone)
    return local.astimezone(timezone.utc)


def weekday_key(day: date) -> str:
    """Three-letter lowercase weekday (``"mon"`` .. ``"sun"``)."""
    return WEEKDAY_KEYS[day.weekday()]


def local_date(instant: datetime, time_zone: str) -> date:
    """Calendar date of ``instant`` as seen in ``time_zone``."""
    return ensure_utc(instant).astimezone(get_zone(time_zone)).date()


def ensure_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        raise ValidationError("Naive datetime given where an absolute instant is required")
    return instant.astimezone(timezone.utc)


def parse_instant(value: str) -> datetime:
    """Parse an ISO-8601 instant (``Z`` or explicit offset) into UTC."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Missing date/time value")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError(f"Invalid date/time: {value!r}") from None
    if parsed.tzinfo is None:
        raise ValidationError(f"Date/time must include a UTC offset: {value!r}")
    return parsed.astimezone(timezone.utc)


def parse_date(value: str) -> date:
    """Parse ``YYYY-MM-DD``."""
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD") from None


def to_iso(instant: datetime) -> str:
    """UTC ISO-8601 string with a ``Z`` suffix, second precision."""
    return ensure_utc(instant).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")
