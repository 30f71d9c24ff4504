"""Data models for the booking engine."""

from .booking import Booking, BookingStatus, Guest, Reminder, RescheduleRecord
from .host import Host, ReminderPreferences, SchedulingPolicy, WorkingHoursBlock

__all__ = [
    "Booking",
    "BookingStatus",
    "Guest",
    "Host",
    "Reminder",
    "ReminderPreferences",
    "RescheduleRecord",
    "SchedulingPolicy",
    "WorkingHoursBlock",
]
