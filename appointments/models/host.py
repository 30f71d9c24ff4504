"""Pydantic models for a host's booking page configuration."""

from __future__ import annotations

import re

from pydantic import BaseModel, Field, field_validator, model_validator

from appointments.errors import ValidationError
from appointments.timeutils import WEEKDAY_KEYS, get_zone, parse_hhmm

REMINDER_TYPES = ("24h", "1h")

_HANDLE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class WorkingHoursBlock(BaseModel):
    """One recurring local-time window, e.g. ``09:00``–``12:00``."""

    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _check_hhmm(cls, value: str) -> str:
        try:
            parse_hhmm(value)
        except ValidationError as exc:
            raise ValueError(exc.message) from None
        return value

    @model_validator(mode="after")
    def _check_order(self) -> "WorkingHoursBlock":
        if parse_hhmm(self.start) >= parse_hhmm(self.end):
            raise ValueError(f"Block start {self.start} must be before end {self.end}")
        return self


class ReminderPreferences(BaseModel):
    """Which reminders a host's bookings get and who receives them.

    The guest gets every enabled reminder type; the host is copied on the 1h
    reminder.  With the guest switched off the host receives them directly.
    """

    enabled: bool = True
    guest_enabled: bool = True
    host_enabled: bool = True
    types: dict[str, bool] = Field(
        default_factory=lambda: {name: True for name in REMINDER_TYPES}
    )

    @field_validator("types")
    @classmethod
    def _check_types(cls, value: dict[str, bool]) -> dict[str, bool]:
        unknown = set(value) - set(REMINDER_TYPES)
        if unknown:
            raise ValueError(f"Unknown reminder types: {sorted(unknown)}")
        return {name: value.get(name, True) for name in REMINDER_TYPES}

    def active_types(self) -> tuple[str, ...]:
        """Reminder types to schedule; empty when nobody would receive them."""
        if not self.enabled or not (self.guest_enabled or self.host_enabled):
            return ()
        return tuple(name for name in REMINDER_TYPES if self.types.get(name, True))


class SchedulingPolicy(BaseModel):
    """Per-host slot generation settings."""

    time_zone: str = "UTC"
    default_duration_min: int = 30
    buffer_min: int = 0
    min_notice_min: int = 120
    selected_calendar_ids: list[str] = ["primary"]
    working_hours: dict[str, list[WorkingHoursBlock]] = {}
    reminders: ReminderPreferences = Field(default_factory=ReminderPreferences)

    @field_validator("time_zone")
    @classmethod
    def _check_zone(cls, value: str) -> str:
        try:
            get_zone(value)
        except ValidationError as exc:
            raise ValueError(exc.message) from None
        return value

    @field_validator("default_duration_min")
    @classmethod
    def _check_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("default_duration_min must be > 0")
        return value

    @field_validator("buffer_min", "min_notice_min")
    @classmethod
    def _check_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @field_validator("selected_calendar_ids")
    @classmethod
    def _default_calendar(cls, value: list[str]) -> list[str]:
        # ordered set: keep first occurrence
        ids = list(dict.fromkeys(v for v in value if v))
        return ids or ["primary"]

    @field_validator("working_hours")
    @classmethod
    def _check_weekdays(
        cls, value: dict[str, list[WorkingHoursBlock]]
    ) -> dict[str, list[WorkingHoursBlock]]:
        normalized = {key.lower(): blocks for key, blocks in value.items()}
        unknown = set(normalized) - set(WEEKDAY_KEYS)
        if unknown:
            raise ValueError(f"Unknown weekday keys: {sorted(unknown)}")
        return normalized

    def blocks_for(self, weekday: str) -> list[WorkingHoursBlock]:
        return list(self.working_hours.get(weekday, []))


class Host(BaseModel):
    """A booking-page owner."""

    id: str
    handle: str
    email: str
    name: str = ""
    policy: SchedulingPolicy = Field(default_factory=SchedulingPolicy)

    @field_validator("handle")
    @classmethod
    def _check_handle(cls, value: str) -> str:
        value = value.strip()
        if not _HANDLE_RE.match(value):
            raise ValueError("Handle may only contain letters, digits, '.', '_' and '-'")
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        value = value.strip()
        if "@" not in value:
            raise ValueError("Host email must be an address")
        return value

    @property
    def handle_lower(self) -> str:
        return self.handle.lower()
