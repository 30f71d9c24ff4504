"""Tests for the periodic reminder dispatcher."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from appointments.dispatch import ReminderDispatcher, reminder_recipients
from appointments.models import Booking, ReminderPreferences

from conftest import at


@pytest.fixture
def dispatcher(store, notifier, clock):
    return ReminderDispatcher(store, notifier, clock=clock, base_url="https://book.example.com")


async def create_booking(manager, guest):
    outcome = await manager.create("alice", at(10), at(10, 30), guest)
    return outcome.booking


class TestRunOnce:
    async def test_nothing_due(self, manager, dispatcher, notifier, guest):
        await create_booking(manager, guest)
        notifier.outbox.clear()
        report = await dispatcher.run_once()
        assert (report.sent, report.failed) == (0, 0)
        assert notifier.outbox == []

    async def test_sends_due_and_marks_sent(self, manager, dispatcher, store, notifier, clock, guest):
        booking = await create_booking(manager, guest)
        notifier.outbox.clear()
        clock.now = datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)

        report = await dispatcher.run_once()

        assert report.sent == 1
        assert len(notifier.outbox) == 1
        assert notifier.outbox[0].to == "bob@example.com"
        assert notifier.outbox[0].cc == ()
        assert "tomorrow" in notifier.outbox[0].subject
        stored = await store.get_booking(booking.id)
        assert stored.reminders[0].sent_at_utc == clock.now
        assert stored.reminders[1].sent_at_utc is None

    async def test_not_sent_twice(self, manager, dispatcher, notifier, clock, guest):
        await create_booking(manager, guest)
        clock.now = datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)
        await dispatcher.run_once()
        clock.advance(minutes=5)
        report = await dispatcher.run_once()
        assert report.sent == 0

    async def test_one_hour_reminder_copies_host(self, manager, dispatcher, notifier, clock, guest):
        await create_booking(manager, guest)
        clock.now = at(9, 0)
        notifier.outbox.clear()
        report = await dispatcher.run_once()
        assert report.sent == 2
        one_hour = [m for m in notifier.outbox if "one hour" in m.subject]
        assert one_hour[0].cc == ("alice@example.com",)

    async def test_failed_send_stays_eligible(self, manager, dispatcher, store, notifier, clock, guest):
        booking = await create_booking(manager, guest)
        clock.now = datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)
        real_send = notifier.send
        notifier.send = AsyncMock(return_value=False)

        report = await dispatcher.run_once()
        assert (report.sent, report.failed) == (0, 1)
        assert report.errors == [f"{booking.id}:24h"]
        stored = await store.get_booking(booking.id)
        assert stored.reminders[0].sent_at_utc is None

        notifier.send = real_send
        report = await dispatcher.run_once()
        assert report.sent == 1

    async def test_send_exception_counts_as_failure(self, manager, dispatcher, notifier, clock, guest):
        await create_booking(manager, guest)
        clock.now = datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)
        notifier.send = AsyncMock(side_effect=TimeoutError())
        report = await dispatcher.run_once()
        assert report.failed == 1

    async def test_canceled_booking_skipped(self, manager, dispatcher, notifier, clock, guest):
        outcome = await manager.create("alice", at(10), at(10, 30), guest)
        await manager.cancel(outcome.booking.id, outcome.cancel_token)
        notifier.outbox.clear()
        clock.now = at(9, 30)
        report = await dispatcher.run_once()
        assert report.sent == 0
        assert notifier.outbox == []


class TestReminderPreferences:
    async def test_host_not_copied_when_disabled(self, manager, dispatcher, host, notifier, clock, guest):
        await create_booking(manager, guest)
        host.policy.reminders = ReminderPreferences(host_enabled=False)
        clock.now = at(9, 0)
        notifier.outbox.clear()
        await dispatcher.run_once()
        assert all(m.cc == () for m in notifier.outbox)
        assert {m.to for m in notifier.outbox} == {"bob@example.com"}

    async def test_host_only_receives_directly(self, manager, dispatcher, host, notifier, clock, guest):
        await create_booking(manager, guest)
        host.policy.reminders = ReminderPreferences(guest_enabled=False)
        clock.now = at(9, 0)
        notifier.outbox.clear()
        report = await dispatcher.run_once()
        assert report.sent == 2
        assert {m.to for m in notifier.outbox} == {"alice@example.com"}

    async def test_type_switched_off_after_booking(
        self, manager, dispatcher, store, host, notifier, clock, guest
    ):
        booking = await create_booking(manager, guest)
        host.policy.reminders = ReminderPreferences(types={"24h": False})
        clock.now = datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)
        notifier.outbox.clear()

        report = await dispatcher.run_once()

        assert (report.sent, report.skipped) == (0, 1)
        assert notifier.outbox == []
        stored = await store.get_booking(booking.id)
        assert [r.type for r in stored.reminders] == ["1h"]


class TestReminderRecipients:
    def test_no_host_record(self):
        booking = Booking(
            id="b1", user_id="gone", title="Meeting with Bob", guest_name="Bob",
            guest_email="bob@example.com", start_time=at(10), end_time=at(10, 30),
            created_at=at(0), updated_at=at(0),
        )
        assert reminder_recipients(booking, None, "1h") == ("bob@example.com", [])
