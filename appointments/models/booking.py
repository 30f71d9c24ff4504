"""Pydantic models for bookings and their reminders."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from appointments.errors import ValidationError
from appointments.timeutils import get_zone

ReminderType = Literal["24h", "1h"]


class BookingStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CANCELED = "canceled"


class Guest(BaseModel):
    """The unauthenticated person booking a slot."""

    name: str
    email: str
    time_zone: Optional[str] = None
    notes: str = ""

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name is required")
        return value

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        value = value.strip()
        local, _, domain = value.partition("@")
        if not local or "." not in domain:
            raise ValueError(f"invalid email address: {value!r}")
        return value

    @field_validator("time_zone")
    @classmethod
    def _check_zone(cls, value: Optional[str]) -> Optional[str]:
        if value:
            try:
                get_zone(value)
            except ValidationError as exc:
                raise ValueError(exc.message) from None
        return value or None


class Reminder(BaseModel):
    """A scheduled notice.  ``sent_at_utc`` is set once and never cleared."""

    model_config = ConfigDict(frozen=True)

    id: str
    type: ReminderType
    send_at_utc: datetime
    sent_at_utc: Optional[datetime] = None

    @property
    def is_sent(self) -> bool:
        return self.sent_at_utc is not None


class RescheduleRecord(BaseModel):
    old_start: datetime
    old_end: datetime
    new_start: datetime
    new_end: datetime
    rescheduled_at: datetime


class Booking(BaseModel):
    """Authoritative booking record.

    Start/end are absolute instants; ``time_zone`` is the host zone at the
    time of booking and ``guest_time_zone`` is only used for rendering.
    """

    id: str
    user_id: str
    title: str
    guest_name: str
    guest_email: str
    guest_time_zone: str = "UTC"
    notes: str = ""
    start_time: datetime
    end_time: datetime
    time_zone: str = "UTC"
    status: BookingStatus = BookingStatus.SCHEDULED
    reschedule_count: int = 0
    reschedule_history: list[RescheduleRecord] = []
    reminders: list[Reminder] = []
    cancel_token: Optional[str] = None
    reschedule_token: Optional[str] = None
    external_event_id: Optional[str] = None
    external_calendar_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_canceled(self) -> bool:
        return self.status == BookingStatus.CANCELED
