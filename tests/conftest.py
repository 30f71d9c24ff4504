"""Shared fixtures: a fixed clock, one host and a fully in-memory manager."""

from datetime import datetime, timedelta, timezone

import pytest

from appointments.calendar_providers import InMemoryCalendarProvider
from appointments.lifecycle import BookingManager, LifecycleOptions
from appointments.models import Host, SchedulingPolicy, WorkingHoursBlock
from appointments.notifications import LoggingNotificationSender
from appointments.store import InMemoryBookingStore
from appointments.tokens import ActionTokenSigner

# 2025-06-02 is a Monday
MONDAY = datetime(2025, 6, 2, tzinfo=timezone.utc).date()


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 6, 1, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def host():
    return Host(
        id="host-1",
        handle="Alice",
        email="alice@example.com",
        name="Alice Host",
        policy=SchedulingPolicy(
            time_zone="UTC",
            default_duration_min=30,
            min_notice_min=120,
            working_hours={"mon": [WorkingHoursBlock(start="09:00", end="12:00")]},
        ),
    )


@pytest.fixture
def store(host):
    return InMemoryBookingStore(hosts=[host])


@pytest.fixture
def calendar():
    return InMemoryCalendarProvider()


@pytest.fixture
def notifier():
    return LoggingNotificationSender()


@pytest.fixture
def signer(clock):
    return ActionTokenSigner("test-secret", clock=clock)


@pytest.fixture
def manager(store, signer, calendar, notifier, clock):
    return BookingManager(
        store=store,
        tokens=signer,
        calendar=calendar,
        notifier=notifier,
        options=LifecycleOptions(base_url="https://book.example.com"),
        clock=clock,
    )


@pytest.fixture
def guest():
    return {"name": "Bob Guest", "email": "bob@example.com", "time_zone": "America/New_York"}


def at(hour: int, minute: int = 0, day=MONDAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


class FakeSettings:
    """Stand-in for ``appointments.config.settings`` in auth tests."""

    def __init__(self, admin_api_key="", debug=False):
        self.admin_api_key = admin_api_key
        self.debug = debug
