"""Reminder calculation and bookkeeping.

Reminders fire at fixed offsets before a booking's start (24h and 1h).
Everything here is an immutable update: functions return new lists and never
touch the caller's list or its reminders.

Sent reminders are audit records.  They are carried through every
recomputation unchanged.  A sent reminder suppresses regeneration of its type
only for the start time it was sent for (``send_at_utc + offset``), so moving
a booking to a new time yields fresh pending reminders for that time while the
old delivery record stays in place.  This replaces the simpler rule of
never regenerating a type once any reminder of that type was sent, which
would leave a booking moved after its 24h reminder with no 24h reminder for
the new time.

The ``types`` argument restricts scheduling to the reminder types a host has
enabled (see :class:`~appointments.models.host.ReminderPreferences`); when it
is omitted every known type is scheduled.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Iterable, Optional

from appointments.models.booking import Booking, Reminder
from appointments.timeutils import ensure_utc

REMINDER_OFFSETS: dict[str, timedelta] = {
    "24h": timedelta(hours=24),
    "1h": timedelta(hours=1),
}


def _new_reminder(reminder_type: str, send_at: datetime) -> Reminder:
    return Reminder(id=str(uuid.uuid4()), type=reminder_type, send_at_utc=send_at)


def _offsets(types: Optional[Iterable[str]]) -> list[tuple[str, timedelta]]:
    if types is None:
        return list(REMINDER_OFFSETS.items())
    wanted = set(types)
    return [(name, offset) for name, offset in REMINDER_OFFSETS.items() if name in wanted]


def calculate_reminders(
    start_time: datetime, now: datetime, types: Optional[Iterable[str]] = None
) -> list[Reminder]:
    """Pending reminders for a booking starting at ``start_time``.

    Reminders whose send time is not strictly after ``now`` are skipped.
    """
    start = ensure_utc(start_time)
    now = ensure_utc(now)
    reminders: list[Reminder] = []
    for reminder_type, offset in _offsets(types):
        send_at = start - offset
        if send_at > now:
            reminders.append(_new_reminder(reminder_type, send_at))
    return reminders


def recompute_reminders(
    existing: Iterable[Reminder],
    new_start_time: datetime,
    now: datetime,
    types: Optional[Iterable[str]] = None,
) -> list[Reminder]:
    """Rebuild the reminder set for a booking moved to ``new_start_time``.

    Every sent reminder is kept as-is.  For each reminder type, a pending
    reminder is produced for the new start unless a sent reminder already
    covers that exact start.  Pending reminders that already match the new
    send time keep their id, so repeated calls are idempotent.
    """
    start = ensure_utc(new_start_time)
    now = ensure_utc(now)
    existing = list(existing)

    sent = [r for r in existing if r.is_sent]
    pending = {(r.type, ensure_utc(r.send_at_utc)): r for r in existing if not r.is_sent}
    covered = {r.type for r in sent if ensure_utc(r.send_at_utc) + REMINDER_OFFSETS[r.type] == start}

    fresh: list[Reminder] = []
    for reminder_type, offset in _offsets(types):
        if reminder_type in covered:
            continue
        send_at = start - offset
        if send_at <= now:
            continue
        fresh.append(pending.get((reminder_type, send_at)) or _new_reminder(reminder_type, send_at))

    return sent + fresh


def get_due_reminders(booking: Booking, now: datetime) -> list[Reminder]:
    """Unsent reminders whose send time has arrived; never for canceled bookings."""
    if booking.is_canceled:
        return []
    now = ensure_utc(now)
    return [
        r for r in booking.reminders
        if not r.is_sent and ensure_utc(r.send_at_utc) <= now
    ]


def mark_reminder_sent(
    reminders: Iterable[Reminder], reminder_id: str, now: datetime
) -> list[Reminder]:
    """Return a new list with ``reminder_id`` stamped as sent at ``now``.

    A reminder that is already sent keeps its original timestamp.
    """
    now = ensure_utc(now)
    return [
        r.model_copy(update={"sent_at_utc": now})
        if r.id == reminder_id and not r.is_sent
        else r
        for r in reminders
    ]


def discard_reminder(reminders: Iterable[Reminder], reminder_id: str) -> list[Reminder]:
    """Return a new list without the pending reminder ``reminder_id``.

    Sent reminders are never removed.
    """
    return [r for r in reminders if r.id != reminder_id or r.is_sent]
