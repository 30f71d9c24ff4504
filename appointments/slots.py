"""Candidate slot generation and busy-interval filtering.

Both functions are pure: they take the host's rules, a day, the busy feed and
an explicit ``now`` and return new lists.  All arithmetic happens on UTC
instants; local wall-clock values are converted once per block boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

from appointments.calendar_providers.base import BusyInterval
from appointments.errors import ValidationError
from appointments.models.host import WorkingHoursBlock
from appointments.timeutils import ensure_utc, local_to_utc


@dataclass(frozen=True)
class Slot:
    """A bookable span plus its buffer-padded overlap window.

    ``window_start_utc``/``window_end_utc`` are only used for overlap tests;
    the guest books ``[start_utc, end_utc)``.
    """

    start_utc: datetime
    end_utc: datetime
    window_start_utc: datetime
    window_end_utc: datetime


def overlaps(start: datetime, end: datetime, other_start: datetime, other_end: datetime) -> bool:
    """Half-open overlap test; touching endpoints do not overlap."""
    return start < other_end and other_start < end


def generate_slots(
    day: date,
    time_zone: str,
    blocks: Iterable[WorkingHoursBlock],
    duration_min: int,
    buffer_min: int,
    min_notice_min: int,
    now: datetime,
) -> list[Slot]:
    """Build candidate slots for one local calendar day.

    Each block is walked independently from its start in ``duration_min``
    steps; a slot is kept only if its buffered window starts strictly after
    ``now + min_notice_min``.  Overlapping blocks are not merged here, so
    they can yield duplicate or overlapping slots.
    """
    if duration_min <= 0:
        raise ValidationError("duration must be > 0 minutes")
    if buffer_min < 0 or min_notice_min < 0:
        raise ValidationError("buffer and notice must be >= 0 minutes")

    duration = timedelta(minutes=duration_min)
    buffer = timedelta(minutes=buffer_min)
    notice_cutoff = ensure_utc(now) + timedelta(minutes=min_notice_min)

    slots: list[Slot] = []
    for block in blocks:
        cursor = local_to_utc(day, block.start, time_zone)
        block_end = local_to_utc(day, block.end, time_zone)

        while cursor + duration <= block_end:
            slot_end = cursor + duration
            window_start = cursor - buffer
            if window_start > notice_cutoff:
                slots.append(
                    Slot(
                        start_utc=cursor,
                        end_utc=slot_end,
                        window_start_utc=window_start,
                        window_end_utc=slot_end + buffer,
                    )
                )
            cursor = slot_end

    return slots


def filter_busy(slots: Iterable[Slot], busy: Iterable[BusyInterval]) -> list[Slot]:
    """Drop slots whose buffered window overlaps any busy interval."""
    busy = list(busy)
    return [
        slot
        for slot in slots
        if not any(
            overlaps(slot.window_start_utc, slot.window_end_utc, b.start, b.end)
            for b in busy
        )
    ]


def dedupe_slots(slots: Iterable[Slot]) -> list[Slot]:
    """Collapse identical slots produced by overlapping blocks, ordered by start."""
    unique: dict[tuple[datetime, datetime], Slot] = {}
    for slot in slots:
        unique.setdefault((slot.start_utc, slot.end_utc), slot)
    return sorted(unique.values(), key=lambda s: (s.start_utc, s.end_utc))
