"""Tests for host policy and guest validation."""

import pydantic
import pytest

from appointments.models import (
    Guest,
    Host,
    ReminderPreferences,
    SchedulingPolicy,
    WorkingHoursBlock,
)


class TestWorkingHoursBlock:
    def test_valid(self):
        block = WorkingHoursBlock(start="09:00", end="17:00")
        assert block.start == "09:00"

    def test_start_must_precede_end(self):
        with pytest.raises(pydantic.ValidationError):
            WorkingHoursBlock(start="12:00", end="09:00")
        with pytest.raises(pydantic.ValidationError):
            WorkingHoursBlock(start="09:00", end="09:00")

    def test_bad_format(self):
        with pytest.raises(pydantic.ValidationError):
            WorkingHoursBlock(start="9am", end="17:00")


class TestSchedulingPolicy:
    def test_defaults(self):
        policy = SchedulingPolicy()
        assert policy.time_zone == "UTC"
        assert policy.default_duration_min == 30
        assert policy.buffer_min == 0
        assert policy.min_notice_min == 120
        assert policy.selected_calendar_ids == ["primary"]

    def test_calendar_ids_are_an_ordered_set(self):
        policy = SchedulingPolicy(selected_calendar_ids=["work", "primary", "work"])
        assert policy.selected_calendar_ids == ["work", "primary"]

    def test_empty_calendar_ids_fall_back_to_primary(self):
        assert SchedulingPolicy(selected_calendar_ids=[]).selected_calendar_ids == ["primary"]

    def test_weekday_keys_normalized(self):
        policy = SchedulingPolicy(working_hours={"Mon": [{"start": "09:00", "end": "10:00"}]})
        assert len(policy.blocks_for("mon")) == 1
        assert policy.blocks_for("tue") == []

    def test_unknown_weekday_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            SchedulingPolicy(working_hours={"funday": []})

    def test_unknown_zone_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            SchedulingPolicy(time_zone="Nowhere/Special")

    @pytest.mark.parametrize(
        "field,value",
        [("default_duration_min", 0), ("buffer_min", -1), ("min_notice_min", -10)],
    )
    def test_bad_numbers_rejected(self, field, value):
        with pytest.raises(pydantic.ValidationError):
            SchedulingPolicy(**{field: value})


class TestHostAndGuest:
    def test_host_default_policy_not_shared(self):
        a = Host(id="a", handle="A", email="a@example.com")
        b = Host(id="b", handle="B", email="b@example.com")
        assert a.policy is not b.policy
        assert a.handle_lower == "a"

    def test_guest_strips_name(self):
        guest = Guest(name="  Bob  ", email="bob@example.com")
        assert guest.name == "Bob"

    @pytest.mark.parametrize("email", ["bob", "bob@localhost", "@example.com"])
    def test_guest_bad_email(self, email):
        with pytest.raises(pydantic.ValidationError):
            Guest(name="Bob", email=email)

    def test_guest_blank_name(self):
        with pytest.raises(pydantic.ValidationError):
            Guest(name="   ", email="bob@example.com")

    def test_guest_zone_checked(self):
        assert Guest(name="Bob", email="bob@example.com", time_zone="").time_zone is None
        with pytest.raises(pydantic.ValidationError):
            Guest(name="Bob", email="bob@example.com", time_zone="Moon/Base")


class TestReminderPreferences:
    def test_defaults_schedule_everything(self):
        assert ReminderPreferences().active_types() == ("24h", "1h")

    def test_missing_types_default_on(self):
        prefs = ReminderPreferences(types={"1h": False})
        assert prefs.types == {"24h": True, "1h": False}
        assert prefs.active_types() == ("24h",)

    def test_unknown_type_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            ReminderPreferences(types={"15m": True})

    @pytest.mark.parametrize(
        "fields", [{"enabled": False}, {"guest_enabled": False, "host_enabled": False}]
    )
    def test_nothing_active(self, fields):
        assert ReminderPreferences(**fields).active_types() == ()


class TestHostHandle:
    def test_handle_stripped(self):
        assert Host(id="a", handle=" bob ", email="b@example.com").handle == "bob"

    @pytest.mark.parametrize("handle", ["", "a/b", "has space", "-lead"])
    def test_bad_handles(self, handle):
        with pytest.raises(pydantic.ValidationError):
            Host(id="a", handle=handle, email="b@example.com")
