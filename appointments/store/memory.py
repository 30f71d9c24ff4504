"""Dict-backed store for local development and tests."""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Any

from appointments.errors import ConflictError
from appointments.models.booking import Booking
from appointments.models.host import Host

from .base import BookingStore, TokenMarker

log = logging.getLogger("appointments.store.memory")


class InMemoryBookingStore(BookingStore):
    """Single-process store.

    None of the mutating methods await between reading and writing, so each
    one is atomic with respect to other coroutines on the same event loop.
    """

    def __init__(self, hosts: list[Host] | None = None) -> None:
        self._hosts: dict[str, Host] = {}
        self._bookings: dict[str, Booking] = {}
        self._markers: dict[str, TokenMarker] = {}
        for host in hosts or []:
            self._put_host(host)

    def _put_host(self, host: Host) -> None:
        for other in self._hosts.values():
            if other.id != host.id and other.handle_lower == host.handle_lower:
                raise ConflictError(
                    f"Handle '{host.handle}' is already in use", code="HANDLE_TAKEN"
                )
        self._hosts[host.id] = host

    # -- hosts ---------------------------------------------------------

    async def get_host(self, host_id: str) -> Host | None:
        return self._hosts.get(host_id)

    async def get_host_by_handle(self, handle: str) -> Host | None:
        wanted = handle.lower()
        for host in self._hosts.values():
            if host.handle_lower == wanted:
                return host
        return None

    async def save_host(self, host: Host) -> None:
        self._put_host(host)
        log.debug("Host %s saved with handle %s", host.id, host.handle)

    # -- bookings ------------------------------------------------------

    async def insert_booking(self, booking: Booking) -> None:
        if booking.id in self._bookings:
            raise ValueError(f"Booking {booking.id} already exists")
        self._bookings[booking.id] = booking

    async def get_booking(self, booking_id: str) -> Booking | None:
        return self._bookings.get(booking_id)

    async def find_booking_by_token(self, token: str) -> Booking | None:
        for booking in self._bookings.values():
            if token in (booking.cancel_token, booking.reschedule_token):
                return booking
        return None

    async def update_booking(self, booking_id: str, **fields: Any) -> Booking:
        current = self._bookings.get(booking_id)
        if current is None:
            raise KeyError(booking_id)
        unknown = set(fields) - set(Booking.model_fields)
        if unknown:
            raise ValueError(f"Unknown booking fields: {sorted(unknown)}")
        updated = current.model_copy(update=fields)
        self._bookings[booking_id] = updated
        return updated

    async def list_active_bookings(self) -> list[Booking]:
        return [b for b in self._bookings.values() if not b.is_canceled]

    # -- token usage markers -------------------------------------------

    async def put_token_marker(self, marker: TokenMarker) -> None:
        self._markers[marker.token_hash] = marker

    async def get_token_marker(self, token_hash: str) -> TokenMarker | None:
        return self._markers.get(token_hash)

    async def consume_token_marker(self, token_hash: str, used_at: datetime) -> bool:
        marker = self._markers.get(token_hash)
        if marker is None or marker.is_used:
            return False
        self._markers[token_hash] = dataclasses.replace(marker, used_at=used_at)
        log.debug("Token marker consumed for %s/%s", marker.subject_id, marker.purpose)
        return True
