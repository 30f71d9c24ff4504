"""Booking lifecycle: availability listing, create, cancel and reschedule.

The manager commits authoritative state to the store first and then runs the
side effects (calendar mirroring, e-mail) one by one, each inside its own
failure boundary.  A calendar or e-mail outage is logged and reported on the
returned :class:`BookingOutcome`; it never rolls back or blocks the booking.

Guest actions are authorized by action tokens.  The order of checks is:
signature/expiry/purpose, booking lookup, token subject, usage marker, guest
e-mail binding, booking state.  The usage marker is flipped (atomically, by
the store) before the booking is mutated, so two concurrent submissions of
the same link produce exactly one success.

Statuses: ``scheduled``/``confirmed`` → ``canceled`` (terminal).  A
reschedule keeps the status and bumps ``reschedule_count``.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from appointments.calendar_providers.base import BusyInterval, CalendarEvent, CalendarProvider
from appointments.errors import (
    AlreadyCanceledError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    TokenInvalidError,
    TokenUsedError,
    ValidationError,
)
from appointments.ics import build_ics
from appointments.models.booking import Booking, BookingStatus, Guest, RescheduleRecord
from appointments.models.host import Host
from appointments.notifications import messages
from appointments.notifications.base import Attachment, NotificationSender
from appointments.pii import redact_pii
from appointments.reminders import calculate_reminders, recompute_reminders
from appointments.slots import Slot, dedupe_slots, filter_busy, generate_slots, overlaps
from appointments.store.base import BookingStore, TokenMarker
from appointments.timeutils import ensure_utc, get_zone, local_date, utc_now, weekday_key
from appointments.tokens import (
    CANCEL_BOOKING,
    RESCHEDULE_BOOKING,
    ActionTokenSigner,
    SignedToken,
    token_hash,
)

log = logging.getLogger("appointments.lifecycle")


@dataclass(frozen=True)
class LifecycleOptions:
    cancel_token_ttl_minutes: int = 60 * 24 * 30
    reschedule_token_ttl_minutes: int = 60 * 48
    reminders_enabled: bool = True
    reschedule_enabled: bool = True
    busy_check_fail_closed: bool = False
    base_url: str = "http://localhost:8080"

    @classmethod
    def from_settings(cls, settings: Any) -> "LifecycleOptions":
        return cls(
            cancel_token_ttl_minutes=settings.cancel_token_ttl_minutes,
            reschedule_token_ttl_minutes=settings.reschedule_token_ttl_minutes,
            reminders_enabled=settings.reminders_enabled,
            reschedule_enabled=settings.reschedule_enabled,
            busy_check_fail_closed=settings.busy_check_fail_closed,
            base_url=settings.base_url,
        )


@dataclass(frozen=True)
class AvailabilityResult:
    host_id: str
    day: date
    time_zone: str
    duration_min: int
    slots: list[Slot]
    # False when the busy feed failed and slots were not filtered against it
    calendar_available: bool = True


@dataclass
class BookingOutcome:
    """Result of a lifecycle operation.

    ``calendar_synced`` / ``notified`` are ``None`` when the step was not
    attempted (no collaborator configured or nothing to do).
    """

    booking: Booking
    cancel_token: Optional[str] = None
    reschedule_token: Optional[str] = None
    calendar_synced: Optional[bool] = None
    notified: Optional[bool] = None
    warnings: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.calendar_synced is False or self.notified is False


class BookingManager:
    """Coordinates slot validation, token checks, persistence and side effects."""

    def __init__(
        self,
        store: BookingStore,
        tokens: ActionTokenSigner,
        calendar: Optional[CalendarProvider] = None,
        notifier: Optional[NotificationSender] = None,
        options: Optional[LifecycleOptions] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._calendar = calendar
        self._notifier = notifier
        self._options = options or LifecycleOptions()
        self._clock = clock

    @property
    def store(self) -> BookingStore:
        return self._store

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def list_availability(
        self, handle: str, day: date, duration_min: Optional[int] = None
    ) -> AvailabilityResult:
        """Bookable slots for ``day`` (host-local date) on the host's page."""
        host = await self._require_host_by_handle(handle)
        duration = duration_min or host.policy.default_duration_min
        now = self._clock()

        candidates = dedupe_slots(self._candidate_slots(host, day, duration, now))
        if not candidates:
            return AvailabilityResult(host.id, day, host.policy.time_zone, duration, [])

        busy = await self._fetch_busy(
            host,
            min(s.window_start_utc for s in candidates),
            max(s.window_end_utc for s in candidates),
        )
        slots = filter_busy(candidates, busy or [])
        log.info(
            "Availability for %s on %s: %d candidate(s), %d free",
            host.handle, day.isoformat(), len(candidates), len(slots),
        )
        return AvailabilityResult(
            host_id=host.id,
            day=day,
            time_zone=host.policy.time_zone,
            duration_min=duration,
            slots=slots,
            calendar_available=busy is not None,
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create(
        self,
        handle: str,
        slot_start: datetime,
        slot_end: datetime,
        guest: Union[Guest, dict],
    ) -> BookingOutcome:
        """Book ``[slot_start, slot_end)`` for ``guest`` on the host's page.

        Re-derives the host's slots and re-reads the busy feed before
        committing; a slot taken since it was listed raises ConflictError and
        the caller should re-offer fresh availability.
        """
        guest = self._validate_guest(guest)
        start, end = self._validate_interval(slot_start, slot_end)
        now = self._clock()
        host = await self._require_host_by_handle(handle)
        policy = host.policy

        duration_min = int((end - start).total_seconds() // 60)
        if end - start != timedelta(minutes=duration_min):
            raise ValidationError("Slot length must be a whole number of minutes")

        day = local_date(start, policy.time_zone)
        candidates = self._candidate_slots(host, day, duration_min, now)
        if not any(s.start_utc == start and s.end_utc == end for s in candidates):
            raise ConflictError("The requested time is not an available slot")

        busy = await self._fetch_busy(host, start, end)
        self._check_busy(busy, start, end)

        booking_id = str(uuid.uuid4())
        cancel = self._sign(booking_id, CANCEL_BOOKING, guest.email)
        reschedule = (
            self._sign(booking_id, RESCHEDULE_BOOKING, guest.email)
            if self._options.reschedule_enabled
            else None
        )

        booking = Booking(
            id=booking_id,
            user_id=host.id,
            title=f"Meeting with {guest.name}",
            guest_name=guest.name,
            guest_email=guest.email,
            guest_time_zone=guest.time_zone or policy.time_zone,
            notes=guest.notes,
            start_time=start,
            end_time=end,
            time_zone=policy.time_zone,
            status=BookingStatus.SCHEDULED,
            reminders=(
                calculate_reminders(start, now, policy.reminders.active_types())
                if self._options.reminders_enabled
                else []
            ),
            cancel_token=cancel.token,
            reschedule_token=reschedule.token if reschedule else None,
            created_at=now,
            updated_at=now,
        )

        await self._store.put_token_marker(self._marker(booking_id, CANCEL_BOOKING, cancel))
        if reschedule:
            await self._store.put_token_marker(
                self._marker(booking_id, RESCHEDULE_BOOKING, reschedule)
            )
        await self._store.insert_booking(booking)
        log.info(
            "Booking %s created for host %s (%s, guest %s)",
            booking_id, host.id, start.isoformat(), redact_pii(guest.email),
        )

        outcome = BookingOutcome(
            booking=booking,
            cancel_token=cancel.token,
            reschedule_token=reschedule.token if reschedule else None,
        )
        if busy is None:
            outcome.warnings.append("Calendar could not be checked; booking accepted unverified")

        outcome.calendar_synced = await self._mirror_insert(host, outcome)
        outcome.notified = await self._notify_confirmation(host, outcome.booking)
        return outcome

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    async def cancel(self, booking_id: str, token: str) -> BookingOutcome:
        """Cancel a booking with a guest's cancel token."""
        booking, marker = await self._authorize(booking_id, token, CANCEL_BOOKING)
        now = self._clock()

        if not await self._store.consume_token_marker(marker.token_hash, now):
            raise TokenUsedError("This cancel link was already used")
        booking = await self._store.update_booking(
            booking.id, status=BookingStatus.CANCELED, updated_at=now
        )
        log.info("Booking %s canceled by guest", booking.id)

        outcome = BookingOutcome(booking=booking)
        outcome.calendar_synced = await self._mirror_delete(booking)
        outcome.notified = await self._notify_cancellation(booking)
        return outcome

    # ------------------------------------------------------------------
    # Reschedule
    # ------------------------------------------------------------------

    async def reschedule(
        self,
        booking_id: str,
        token: str,
        new_start: datetime,
        new_end: datetime,
        guest_time_zone: Optional[str] = None,
    ) -> BookingOutcome:
        """Move a booking with a guest's reschedule token.

        Sent reminders survive; pending ones are recomputed for the new time.
        A fresh reschedule token is issued since the presented one is spent.
        """
        if not self._options.reschedule_enabled:
            raise ForbiddenError("Rescheduling is disabled", code="RESCHEDULE_DISABLED")

        booking, marker = await self._authorize(booking_id, token, RESCHEDULE_BOOKING)
        start, end = self._validate_interval(new_start, new_end)
        now = self._clock()
        if start <= now:
            raise ValidationError("The new time must be in the future")
        guest_zone = get_zone(guest_time_zone).key if guest_time_zone else None

        host = await self._store.get_host(booking.user_id)
        if host is None:
            raise NotFoundError("Host for this booking no longer exists")

        busy = await self._fetch_busy(host, start, end)
        if busy is not None:
            # the booking's own mirrored event is not a conflict
            own_start, own_end = ensure_utc(booking.start_time), ensure_utc(booking.end_time)
            busy = [b for b in busy if not (b.start == own_start and b.end == own_end)]
        self._check_busy(busy, start, end)

        if not await self._store.consume_token_marker(marker.token_hash, now):
            raise TokenUsedError("This reschedule link was already used")

        fresh = self._sign(booking.id, RESCHEDULE_BOOKING, booking.guest_email)
        await self._store.put_token_marker(self._marker(booking.id, RESCHEDULE_BOOKING, fresh))

        old_start, old_end = booking.start_time, booking.end_time
        record = RescheduleRecord(
            old_start=old_start,
            old_end=old_end,
            new_start=start,
            new_end=end,
            rescheduled_at=now,
        )
        reminders = (
            recompute_reminders(
                booking.reminders, start, now, host.policy.reminders.active_types()
            )
            if self._options.reminders_enabled
            else list(booking.reminders)
        )
        updates: dict[str, Any] = {
            "start_time": start,
            "end_time": end,
            "reschedule_count": booking.reschedule_count + 1,
            "reschedule_history": [*booking.reschedule_history, record],
            "reminders": reminders,
            "reschedule_token": fresh.token,
            "updated_at": now,
        }
        if guest_zone:
            updates["guest_time_zone"] = guest_zone
        booking = await self._store.update_booking(booking.id, **updates)
        log.info(
            "Booking %s rescheduled %s -> %s (count=%d)",
            booking.id, old_start.isoformat(), start.isoformat(), booking.reschedule_count,
        )

        outcome = BookingOutcome(booking=booking, reschedule_token=fresh.token)
        if busy is None:
            outcome.warnings.append("Calendar could not be checked; new time accepted unverified")
        if booking.external_event_id:
            outcome.calendar_synced = await self._mirror_update(host, booking)
        else:
            outcome.calendar_synced = await self._mirror_insert(host, outcome)
        outcome.notified = await self._notify_reschedule(host, outcome.booking, old_start)
        return outcome

    # ------------------------------------------------------------------
    # Token preview
    # ------------------------------------------------------------------

    async def preview(self, token: str, purpose: str) -> Booking:
        """Resolve the booking a link controls without consuming the link."""
        claims = self._tokens.require(token, purpose)
        booking = await self._require_booking(claims["sub"])
        await self._unused_marker(token, claims)
        if booking.is_canceled:
            raise AlreadyCanceledError("This booking was already canceled")
        return booking

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _candidate_slots(
        self, host: Host, day: date, duration_min: int, now: datetime
    ) -> list[Slot]:
        policy = host.policy
        return generate_slots(
            day,
            policy.time_zone,
            policy.blocks_for(weekday_key(day)),
            duration_min,
            policy.buffer_min,
            policy.min_notice_min,
            now,
        )

    async def _fetch_busy(
        self, host: Host, time_min: datetime, time_max: datetime
    ) -> Optional[list[BusyInterval]]:
        """Busy intervals, or ``None`` when the calendar could not be read."""
        if self._calendar is None:
            return []
        try:
            return await self._calendar.list_busy(
                host.policy.selected_calendar_ids, time_min, time_max
            )
        except Exception:
            log.warning(
                "Busy check failed for host %s (%s – %s)",
                host.id, time_min.isoformat(), time_max.isoformat(),
                exc_info=True,
            )
            return None

    def _check_busy(
        self, busy: Optional[list[BusyInterval]], start: datetime, end: datetime
    ) -> None:
        if busy is None:
            if self._options.busy_check_fail_closed:
                raise ConflictError(
                    "Availability could not be confirmed; please pick a slot again",
                    code="AVAILABILITY_UNCONFIRMED",
                )
            log.warning("Proceeding without a busy check for %s", start.isoformat())
            return
        if any(overlaps(start, end, b.start, b.end) for b in busy):
            raise ConflictError("This time slot is no longer available")

    async def _authorize(
        self, booking_id: str, token: str, purpose: str
    ) -> tuple[Booking, TokenMarker]:
        claims = self._tokens.require(token, purpose)
        booking = await self._require_booking(booking_id)
        if claims.get("sub") != booking.id:
            raise TokenInvalidError("unknown", "Token does not belong to this booking")
        marker = await self._unused_marker(token, claims)
        if str(claims.get("email", "")).lower() != booking.guest_email.lower():
            log.warning("Guest e-mail mismatch on %s token for booking %s", purpose, booking.id)
            raise ForbiddenError("This link was issued to a different guest")
        if booking.is_canceled:
            raise AlreadyCanceledError("This booking was already canceled")
        return booking, marker

    async def _unused_marker(self, token: str, claims: dict[str, Any]) -> TokenMarker:
        marker = await self._store.get_token_marker(token_hash(token))
        if marker is None or marker.subject_id != claims.get("sub") or marker.purpose != claims.get("purpose"):
            raise TokenInvalidError("unknown", "This link was not issued by us")
        if marker.is_used:
            raise TokenUsedError("This link was already used")
        return marker

    def _sign(self, booking_id: str, purpose: str, guest_email: str) -> SignedToken:
        ttl = (
            self._options.cancel_token_ttl_minutes
            if purpose == CANCEL_BOOKING
            else self._options.reschedule_token_ttl_minutes
        )
        return self._tokens.sign(booking_id, purpose, ttl, extra={"email": guest_email})

    @staticmethod
    def _marker(booking_id: str, purpose: str, signed: SignedToken) -> TokenMarker:
        return TokenMarker(
            token_hash=token_hash(signed.token),
            subject_id=booking_id,
            purpose=purpose,
            nonce=signed.nonce,
            expires_at=signed.expires_at,
        )

    async def _require_host_by_handle(self, handle: str) -> Host:
        if not handle or not handle.strip():
            raise ValidationError("Missing handle")
        host = await self._store.get_host_by_handle(handle.strip())
        if host is None:
            raise NotFoundError("Booking page not found")
        return host

    async def _require_booking(self, booking_id: str) -> Booking:
        booking = await self._store.get_booking(booking_id) if booking_id else None
        if booking is None:
            raise NotFoundError("Booking not found")
        return booking

    @staticmethod
    def _validate_guest(guest: Union[Guest, dict]) -> Guest:
        if isinstance(guest, Guest):
            return guest
        try:
            return Guest.model_validate(guest)
        except PydanticValidationError as exc:
            fields = ", ".join(str(e["loc"][0]) for e in exc.errors() if e.get("loc"))
            raise ValidationError(f"Invalid guest details: {fields}") from None

    @staticmethod
    def _validate_interval(start: datetime, end: datetime) -> tuple[datetime, datetime]:
        if not isinstance(start, datetime) or not isinstance(end, datetime):
            raise ValidationError("Start and end are required")
        start, end = ensure_utc(start), ensure_utc(end)
        if end <= start:
            raise ValidationError("End time must be after start time")
        return start, end

    # -- side effects ----------------------------------------------------

    async def _attempt(self, what: str, booking_id: str, step: Awaitable[Any]) -> bool:
        """Run one side effect; failures are logged and reported as False."""
        try:
            result = await step
        except Exception:
            log.exception("%s failed for booking %s", what, booking_id)
            return False
        if result is False:
            log.warning("%s reported failure for booking %s", what, booking_id)
            return False
        return True

    def _calendar_event(self, host: Host, booking: Booking) -> CalendarEvent:
        base = self._options.base_url
        lines = [booking.notes, "", "---", f"Guest: {booking.guest_email}", f"Booking ID: {booking.id}"]
        if booking.reschedule_token:
            lines.append(f"Reschedule: {messages.reschedule_link(base, booking.reschedule_token)}")
        if booking.cancel_token:
            lines.append(f"Cancel: {messages.cancel_link(base, booking.cancel_token)}")
        if booking.reschedule_count:
            lines.append(f"Rescheduled {booking.reschedule_count} time(s)")
        return CalendarEvent(
            summary=booking.title,
            start=booking.start_time,
            end=booking.end_time,
            description="\n".join(lines).strip(),
            attendees=[booking.guest_email],
            time_zone=host.policy.time_zone,
        )

    async def _mirror_insert(self, host: Host, outcome: BookingOutcome) -> Optional[bool]:
        """Create the external event on the first selected calendar that accepts it."""
        if self._calendar is None:
            return None
        booking = outcome.booking
        event = self._calendar_event(host, booking)
        for calendar_id in host.policy.selected_calendar_ids:
            try:
                event_id = await self._calendar.insert_event(calendar_id, event)
            except Exception:
                log.exception(
                    "Calendar insert on %s failed for booking %s", calendar_id, booking.id
                )
                continue
            try:
                outcome.booking = await self._store.update_booking(
                    booking.id,
                    external_event_id=event_id,
                    external_calendar_id=calendar_id,
                )
            except Exception:
                log.exception(
                    "Event %s on %s created but not linked to booking %s",
                    event_id, calendar_id, booking.id,
                )
                return False
            return True
        return False

    async def _mirror_update(self, host: Host, booking: Booking) -> Optional[bool]:
        if self._calendar is None:
            return None
        return await self._attempt(
            "Calendar update",
            booking.id,
            self._calendar.update_event(
                booking.external_calendar_id or "primary",
                booking.external_event_id,
                self._calendar_event(host, booking),
            ),
        )

    async def _mirror_delete(self, booking: Booking) -> Optional[bool]:
        if self._calendar is None or not booking.external_event_id:
            return None
        return await self._attempt(
            "Calendar delete",
            booking.id,
            self._calendar.delete_event(
                booking.external_calendar_id or "primary", booking.external_event_id
            ),
        )

    def _invite(self, booking: Booking, host_email: Optional[str], method: str) -> Attachment:
        ics = build_ics(
            uid=f"booking-{booking.id}",
            start=booking.start_time,
            end=booking.end_time,
            summary=booking.title,
            description=booking.notes,
            organizer=host_email,
            attendees=[(booking.guest_name, booking.guest_email)],
            method=method,
            sequence=booking.reschedule_count + (1 if method == "CANCEL" else 0),
        )
        filename = "cancel.ics" if method == "CANCEL" else "booking.ics"
        return Attachment(filename=filename, content=ics)

    async def _notify_confirmation(self, host: Host, booking: Booking) -> Optional[bool]:
        if self._notifier is None:
            return None
        subject, html = messages.confirmation_email(booking, host, self._options.base_url)
        return await self._attempt(
            "Confirmation email",
            booking.id,
            self._notifier.send(
                booking.guest_email,
                subject,
                html,
                attachments=[self._invite(booking, host.email, "REQUEST")],
                cc=[host.email],
            ),
        )

    async def _notify_cancellation(self, booking: Booking) -> Optional[bool]:
        if self._notifier is None:
            return None
        host = await self._store.get_host(booking.user_id)
        host_email = host.email if host else None

        subject, html = messages.cancellation_email(booking)
        guest_ok = await self._attempt(
            "Guest cancellation email",
            booking.id,
            self._notifier.send(
                booking.guest_email,
                subject,
                html,
                attachments=[self._invite(booking, host_email, "CANCEL")],
            ),
        )
        host_ok = True
        if host_email:
            subject, html = messages.host_cancellation_email(booking)
            host_ok = await self._attempt(
                "Host cancellation email",
                booking.id,
                self._notifier.send(host_email, subject, html),
            )
        return guest_ok and host_ok

    async def _notify_reschedule(
        self, host: Host, booking: Booking, old_start: datetime
    ) -> Optional[bool]:
        if self._notifier is None:
            return None
        subject, html = messages.reschedule_email(booking, old_start, self._options.base_url)
        return await self._attempt(
            "Reschedule email",
            booking.id,
            self._notifier.send(
                booking.guest_email,
                subject,
                html,
                attachments=[self._invite(booking, host.email, "REQUEST")],
                cc=[host.email],
            ),
        )
