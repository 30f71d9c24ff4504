"""Tests for reminder calculation, recomputation and selection."""

from datetime import datetime, timedelta, timezone

from appointments.models import Booking, BookingStatus
from appointments.reminders import (
    calculate_reminders,
    discard_reminder,
    get_due_reminders,
    mark_reminder_sent,
    recompute_reminders,
)

START = datetime(2025, 6, 2, 10, 0, tzinfo=timezone.utc)
NOW = datetime(2025, 6, 1, 0, 0, tzinfo=timezone.utc)


def make_booking(reminders, status=BookingStatus.SCHEDULED) -> Booking:
    return Booking(
        id="b1",
        user_id="host-1",
        title="Meeting with Bob",
        guest_name="Bob",
        guest_email="bob@example.com",
        start_time=START,
        end_time=START + timedelta(minutes=30),
        status=status,
        reminders=reminders,
        created_at=NOW,
        updated_at=NOW,
    )


class TestCalculateReminders:
    def test_both_offsets(self):
        reminders = calculate_reminders(START, NOW)
        assert [r.type for r in reminders] == ["24h", "1h"]
        assert reminders[0].send_at_utc == datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc)
        assert reminders[1].send_at_utc == datetime(2025, 6, 2, 9, 0, tzinfo=timezone.utc)
        assert all(r.sent_at_utc is None for r in reminders)
        assert reminders[0].id != reminders[1].id

    def test_past_send_times_skipped(self):
        reminders = calculate_reminders(START, datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc))
        assert [r.type for r in reminders] == ["1h"]

    def test_send_time_equal_to_now_skipped(self):
        reminders = calculate_reminders(START, START - timedelta(hours=1))
        assert reminders == []

    def test_only_requested_types(self):
        reminders = calculate_reminders(START, NOW, types=["1h"])
        assert [r.type for r in reminders] == ["1h"]

    def test_no_types(self):
        assert calculate_reminders(START, NOW, types=()) == []


class TestRecomputeReminders:
    def test_idempotent(self):
        existing = calculate_reminders(START, NOW)
        new_start = START + timedelta(days=2)
        once = recompute_reminders(existing, new_start, NOW)
        twice = recompute_reminders(once, new_start, NOW)
        assert once == twice

    def test_same_start_keeps_pending_ids(self):
        existing = calculate_reminders(START, NOW)
        assert recompute_reminders(existing, START, NOW) == existing

    def test_pending_moved_to_new_time(self):
        existing = calculate_reminders(START, NOW)
        new_start = START + timedelta(days=1)
        result = recompute_reminders(existing, new_start, NOW)
        assert [(r.type, r.send_at_utc) for r in result] == [
            ("24h", new_start - timedelta(hours=24)),
            ("1h", new_start - timedelta(hours=1)),
        ]

    def test_sent_reminder_preserved_and_new_time_gets_fresh_pair(self):
        """24h reminder already sent, booking moved three days out."""
        sent_at = datetime(2025, 6, 1, 10, 0, 5, tzinfo=timezone.utc)
        existing = calculate_reminders(START, NOW)
        existing = mark_reminder_sent(existing, existing[0].id, sent_at)
        sent = existing[0]

        now = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
        new_start = START + timedelta(days=3)
        result = recompute_reminders(existing, new_start, now)

        assert len(result) == 3
        assert result[0] == sent
        pending = [r for r in result if r.sent_at_utc is None]
        assert [(r.type, r.send_at_utc) for r in pending] == [
            ("24h", new_start - timedelta(hours=24)),
            ("1h", new_start - timedelta(hours=1)),
        ]

    def test_sent_reminder_suppresses_its_type_for_same_start(self):
        existing = calculate_reminders(START, NOW)
        existing = mark_reminder_sent(existing, existing[0].id, NOW + timedelta(hours=10))
        result = recompute_reminders(existing, START, NOW + timedelta(hours=11))
        assert [r.type for r in result] == ["24h", "1h"]
        assert result[0].sent_at_utc is not None
        assert result[1].sent_at_utc is None

    def test_sent_never_altered_across_moves(self):
        existing = calculate_reminders(START, NOW)
        existing = mark_reminder_sent(existing, existing[0].id, NOW + timedelta(hours=10))
        sent = existing[0]
        now = NOW + timedelta(hours=12)
        for days in (1, 2, 5, 3):
            existing = recompute_reminders(existing, START + timedelta(days=days), now)
            assert sent in existing

    def test_moving_closer_drops_past_pending(self):
        existing = calculate_reminders(START + timedelta(days=3), NOW)
        result = recompute_reminders(existing, NOW + timedelta(hours=5), NOW)
        assert [r.type for r in result] == ["1h"]

    def test_input_list_not_mutated(self):
        existing = calculate_reminders(START, NOW)
        snapshot = list(existing)
        recompute_reminders(existing, START + timedelta(days=1), NOW)
        assert existing == snapshot


class TestDueAndMarkSent:
    def test_due_selection(self):
        booking = make_booking(calculate_reminders(START, NOW))
        due = get_due_reminders(booking, datetime(2025, 6, 1, 10, 0, tzinfo=timezone.utc))
        assert [r.type for r in due] == ["24h"]
        assert get_due_reminders(booking, NOW) == []

    def test_canceled_booking_has_nothing_due(self):
        booking = make_booking(calculate_reminders(START, NOW), status=BookingStatus.CANCELED)
        assert get_due_reminders(booking, START) == []

    def test_sent_not_due(self):
        reminders = calculate_reminders(START, NOW)
        reminders = mark_reminder_sent(reminders, reminders[0].id, START - timedelta(hours=23))
        booking = make_booking(reminders)
        assert [r.type for r in get_due_reminders(booking, START)] == ["1h"]

    def test_mark_sent_returns_new_list(self):
        reminders = calculate_reminders(START, NOW)
        stamp = datetime(2025, 6, 1, 10, 1, tzinfo=timezone.utc)
        updated = mark_reminder_sent(reminders, reminders[1].id, stamp)
        assert updated is not reminders
        assert reminders[1].sent_at_utc is None
        assert updated[1].sent_at_utc == stamp
        assert updated[0] is reminders[0]

    def test_mark_sent_twice_keeps_first_stamp(self):
        reminders = calculate_reminders(START, NOW)
        first = datetime(2025, 6, 1, 10, 1, tzinfo=timezone.utc)
        updated = mark_reminder_sent(reminders, reminders[0].id, first)
        again = mark_reminder_sent(updated, reminders[0].id, first + timedelta(hours=1))
        assert again[0].sent_at_utc == first

    def test_unknown_id_is_noop(self):
        reminders = calculate_reminders(START, NOW)
        assert mark_reminder_sent(reminders, "missing", NOW) == reminders


class TestDiscardReminder:
    def test_removes_pending(self):
        reminders = calculate_reminders(START, NOW)
        kept = discard_reminder(reminders, reminders[0].id)
        assert [r.type for r in kept] == ["1h"]
        assert len(reminders) == 2

    def test_sent_reminder_kept(self):
        reminders = calculate_reminders(START, NOW)
        reminders = mark_reminder_sent(reminders, reminders[0].id, NOW)
        assert discard_reminder(reminders, reminders[0].id) == reminders


class TestRecomputeTypes:
    def test_disabled_type_dropped_on_move(self):
        existing = calculate_reminders(START, NOW)
        result = recompute_reminders(existing, START + timedelta(days=1), NOW, types=["24h"])
        assert [r.type for r in result] == ["24h"]
        assert result[0].send_at_utc == START

    def test_sent_reminders_survive_type_filter(self):
        existing = calculate_reminders(START, NOW)
        existing = mark_reminder_sent(existing, existing[0].id, START - timedelta(hours=24))
        result = recompute_reminders(existing, START + timedelta(days=1), NOW, types=["1h"])
        assert [(r.type, r.is_sent) for r in result] == [("24h", True), ("1h", False)]
