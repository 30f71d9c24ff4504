"""Periodic reminder dispatch.

``run_once`` is meant to be called from a scheduler (cron, a worker loop or
the admin endpoint).  A reminder is marked sent only after the notifier
reports success, so a failed delivery is retried on the next run.

Recipients follow the host's :class:`~appointments.models.host.ReminderPreferences`
at send time.  A due reminder whose type the host has since switched off, or
that nobody is left to receive, is discarded rather than marked sent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from appointments.models.booking import Booking, Reminder
from appointments.models.host import Host, ReminderPreferences
from appointments.notifications import messages
from appointments.notifications.base import NotificationSender
from appointments.reminders import discard_reminder, get_due_reminders, mark_reminder_sent
from appointments.store.base import BookingStore
from appointments.timeutils import utc_now

log = logging.getLogger("appointments.dispatch")


@dataclass
class DispatchReport:
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


def reminder_recipients(
    booking: Booking, host: Optional[Host], reminder_type: str
) -> tuple[Optional[str], list[str]]:
    """``(to, cc)`` for one reminder; ``to`` is None when nobody should get it."""
    prefs = host.policy.reminders if host is not None else ReminderPreferences()
    if reminder_type not in prefs.active_types():
        return None, []
    host_email = host.email if host is not None and prefs.host_enabled else None
    if prefs.guest_enabled:
        cc = [host_email] if host_email and reminder_type == "1h" else []
        return booking.guest_email, cc
    return host_email, []


class ReminderDispatcher:
    def __init__(
        self,
        store: BookingStore,
        notifier: NotificationSender,
        clock: Callable[[], datetime] = utc_now,
        base_url: Optional[str] = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock
        self._base_url = base_url

    async def run_once(self) -> DispatchReport:
        now = self._clock()
        report = DispatchReport()
        for booking in await self._store.list_active_bookings():
            due = get_due_reminders(booking, now)
            if not due:
                continue
            host = await self._store.get_host(booking.user_id)
            for reminder in due:
                to, cc = reminder_recipients(booking, host, reminder.type)
                if to is None:
                    await self._discard(booking.id, reminder.id)
                    report.skipped += 1
                elif await self._deliver(booking, reminder, to, cc):
                    await self._mark_sent(booking.id, reminder.id, now)
                    report.sent += 1
                else:
                    report.failed += 1
                    report.errors.append(f"{booking.id}:{reminder.type}")

        if report.sent or report.failed or report.skipped:
            log.info(
                "Reminder run: %d sent, %d failed, %d skipped",
                report.sent, report.failed, report.skipped,
            )
        return report

    async def _deliver(
        self, booking: Booking, reminder: Reminder, to: str, cc: list[str]
    ) -> bool:
        subject, html = messages.reminder_email(booking, reminder.type, self._base_url)
        try:
            return bool(await self._notifier.send(to, subject, html, cc=cc or None))
        except Exception:
            log.exception("Reminder %s for booking %s failed", reminder.type, booking.id)
            return False

    async def _mark_sent(self, booking_id: str, reminder_id: str, now: datetime) -> None:
        # re-read so a concurrent reschedule's reminder set is not overwritten
        latest = await self._store.get_booking(booking_id)
        if latest is None:
            return
        await self._store.update_booking(
            booking_id, reminders=mark_reminder_sent(latest.reminders, reminder_id, now)
        )

    async def _discard(self, booking_id: str, reminder_id: str) -> None:
        latest = await self._store.get_booking(booking_id)
        if latest is None:
            return
        await self._store.update_booking(
            booking_id, reminders=discard_reminder(latest.reminders, reminder_id)
        )
