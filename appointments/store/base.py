"""Persistence interface for hosts, bookings and token usage markers.

The engine never holds a global connection: a concrete store is constructed
by the serving layer and injected into :class:`~appointments.lifecycle.BookingManager`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from appointments.models.booking import Booking
from appointments.models.host import Host


@dataclass(frozen=True)
class TokenMarker:
    """Server-side record of an issued action token.

    Once ``used_at`` is set the token is permanently unusable, even before
    its signature expires.
    """

    token_hash: str
    subject_id: str
    purpose: str
    nonce: str
    expires_at: int
    used_at: Optional[datetime] = None

    @property
    def is_used(self) -> bool:
        return self.used_at is not None


class BookingStore(ABC):
    """Abstract keyed store."""

    # -- hosts ---------------------------------------------------------

    @abstractmethod
    async def get_host(self, host_id: str) -> Host | None:
        """Look up a host by id."""

    @abstractmethod
    async def get_host_by_handle(self, handle: str) -> Host | None:
        """Case-insensitive handle lookup."""

    @abstractmethod
    async def save_host(self, host: Host) -> None:
        """Insert or replace a host by id.

        Raises ConflictError (code ``HANDLE_TAKEN``) when another host already
        owns the same handle, compared case-insensitively.
        """

    # -- bookings ------------------------------------------------------

    @abstractmethod
    async def insert_booking(self, booking: Booking) -> None:
        """Persist a new booking.  Raises ValueError if the id exists."""

    @abstractmethod
    async def get_booking(self, booking_id: str) -> Booking | None:
        """Find a booking by id."""

    @abstractmethod
    async def find_booking_by_token(self, token: str) -> Booking | None:
        """Find the booking whose cancel or reschedule token is ``token``."""

    @abstractmethod
    async def update_booking(self, booking_id: str, **fields: Any) -> Booking:
        """Atomically set a subset of fields and return the updated record.

        Raises KeyError if the booking does not exist.
        """

    @abstractmethod
    async def list_active_bookings(self) -> list[Booking]:
        """All bookings that are not canceled."""

    # -- token usage markers -------------------------------------------

    @abstractmethod
    async def put_token_marker(self, marker: TokenMarker) -> None:
        """Record an issued token."""

    @abstractmethod
    async def get_token_marker(self, token_hash: str) -> TokenMarker | None:
        """Look up the marker for a token hash."""

    @abstractmethod
    async def consume_token_marker(self, token_hash: str, used_at: datetime) -> bool:
        """Atomic check-and-set.

        Returns True if this call flipped the marker from unused to used,
        False if it was already used or does not exist.  Concurrent calls for
        the same hash must see exactly one True.
        """
