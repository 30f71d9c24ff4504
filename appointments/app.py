"""FastAPI application: public booking page API plus admin endpoints.

Endpoints:

  GET  /health                                  Health check
  GET  /public/{handle}/availability            Free slots for one host-local date
  POST /public/{handle}/book                    Book a slot
  GET  /public/bookings/{purpose}/verify        Resolve a cancel/reschedule link
  POST /public/bookings/cancel                  Cancel with a cancel token
  POST /public/bookings/reschedule              Move with a reschedule token
  POST /admin/reminders/run                     Send due reminders (admin key)
  GET  /admin/hosts/{host_id}                   Host booking-page settings (admin key)
  PUT  /admin/hosts/{host_id}                   Create or update a host (admin key)

Public booking and availability requests are rate limited per client IP, and
bookings also per guest email; over the limit they get 429 ``RATE_LIMITED``.

The routes are a thin adapter: they parse input, call
:class:`~appointments.lifecycle.BookingManager` and render the result.  Every
:class:`~appointments.errors.BookingError` renders as
``{"ok": false, "code": ..., "error": ...}`` with its own status code.
"""

from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()

import logging
import time
from typing import Any, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from appointments.auth import require_admin_token
from appointments.calendar_providers import CalendarProvider, InMemoryCalendarProvider
from appointments.config import Settings, settings
from appointments.dispatch import ReminderDispatcher
from appointments.errors import (
    AlreadyCanceledError,
    BookingError,
    CollaboratorUnavailable,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    RateLimitedError,
    TokenInvalidError,
    TokenUsedError,
    ValidationError,
)
from appointments.hosts import configure_host
from appointments.lifecycle import BookingManager, BookingOutcome, LifecycleOptions
from appointments.models.booking import Booking
from appointments.models.host import Host
from appointments.notifications import (
    LoggingNotificationSender,
    NotificationSender,
    ResendNotificationSender,
)
from appointments.ratelimit import RateLimiter, client_ip
from appointments.store import InMemoryBookingStore
from appointments.timeutils import parse_date, parse_instant, to_iso
from appointments.tokens import CANCEL_BOOKING, RESCHEDULE_BOOKING, ActionTokenSigner

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(name)-24s %(levelname)-7s %(message)s",
)

log = logging.getLogger("appointments.app")

_START_TIME = time.time()

_PURPOSES = {"cancel": CANCEL_BOOKING, "reschedule": RESCHEDULE_BOOKING}

_STATUS_BY_ERROR: list[tuple[type[BookingError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (ForbiddenError, 403),
    (ConflictError, 409),
    (AlreadyCanceledError, 409),
    (TokenUsedError, 410),
    (RateLimitedError, 429),
    (CollaboratorUnavailable, 503),
]


def status_for(exc: BookingError) -> int:
    """HTTP status for a booking error."""
    if isinstance(exc, TokenInvalidError):
        if exc.kind == "expired":
            return 410
        if exc.kind == "malformed":
            return 400
        return 401
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


# ── Request bodies ───────────────────────────────────────────────


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class BookRequest(_Body):
    start: str
    end: str
    name: str
    email: str
    time_zone: Optional[str] = Field(default=None, alias="timeZone")
    notes: str = ""


class CancelRequest(_Body):
    booking_id: str = Field(alias="bookingId")
    token: str


class RescheduleRequest(_Body):
    booking_id: str = Field(alias="bookingId")
    token: str
    new_start: str = Field(alias="newStart")
    new_end: str = Field(alias="newEnd")
    time_zone: Optional[str] = Field(default=None, alias="timeZone")


class ReminderSettingsBody(_Body):
    enabled: Optional[bool] = None
    guest_enabled: Optional[bool] = Field(default=None, alias="guestEnabled")
    host_enabled: Optional[bool] = Field(default=None, alias="hostEnabled")
    types: Optional[dict[str, bool]] = None


class HostSettingsRequest(_Body):
    handle: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    time_zone: Optional[str] = Field(default=None, alias="timeZone")
    working_hours: Optional[dict[str, list[dict[str, str]]]] = Field(
        default=None, alias="workingHours"
    )
    default_duration_min: Optional[int] = Field(default=None, alias="defaultDurationMin")
    buffer_min: Optional[int] = Field(default=None, alias="bufferMin")
    min_notice_min: Optional[int] = Field(default=None, alias="minNoticeMin")
    selected_calendar_ids: Optional[list[str]] = Field(
        default=None, alias="selectedCalendarIds"
    )
    reminders: Optional[ReminderSettingsBody] = None


# ── Rendering ────────────────────────────────────────────────────


def host_json(host: Host) -> dict[str, Any]:
    policy = host.policy
    return {
        "id": host.id,
        "handle": host.handle,
        "email": host.email,
        "name": host.name,
        "timeZone": policy.time_zone,
        "workingHours": {
            day: [block.model_dump() for block in blocks]
            for day, blocks in policy.working_hours.items()
        },
        "defaultDurationMin": policy.default_duration_min,
        "bufferMin": policy.buffer_min,
        "minNoticeMin": policy.min_notice_min,
        "selectedCalendarIds": list(policy.selected_calendar_ids),
        "reminders": {
            "enabled": policy.reminders.enabled,
            "guestEnabled": policy.reminders.guest_enabled,
            "hostEnabled": policy.reminders.host_enabled,
            "types": dict(policy.reminders.types),
        },
    }


def booking_json(booking: Booking) -> dict[str, Any]:
    """Public view of a booking; tokens are never echoed back."""
    return {
        "id": booking.id,
        "title": booking.title,
        "status": booking.status.value,
        "startTime": to_iso(booking.start_time),
        "endTime": to_iso(booking.end_time),
        "timeZone": booking.time_zone,
        "guestName": booking.guest_name,
        "guestTimeZone": booking.guest_time_zone,
        "rescheduleCount": booking.reschedule_count,
    }


def _outcome_json(outcome: BookingOutcome) -> dict[str, Any]:
    body: dict[str, Any] = {
        "ok": True,
        "booking": booking_json(outcome.booking),
        "calendarSynced": outcome.calendar_synced,
        "notified": outcome.notified,
    }
    if outcome.warnings:
        body["warnings"] = outcome.warnings
    return body


# ── Default wiring ───────────────────────────────────────────────


def build_calendar(cfg: Settings) -> CalendarProvider:
    if cfg.google_service_account_json:
        try:
            from appointments.calendar_providers.google import GoogleCalendarProvider

            return GoogleCalendarProvider(service_account_path=cfg.google_service_account_json)
        except Exception as e:
            log.warning("Google Calendar not configured: %s", e)
    return InMemoryCalendarProvider()


def build_notifier(cfg: Settings) -> NotificationSender:
    if cfg.resend_api_key:
        return ResendNotificationSender(
            api_key=cfg.resend_api_key,
            sender=cfg.email_from,
            api_url=cfg.resend_api_url,
        )
    return LoggingNotificationSender()


def build_services(cfg: Settings) -> tuple[BookingManager, ReminderDispatcher]:
    """Wire the manager and dispatcher from settings (in-memory store)."""
    for warning in cfg.validate_startup():
        log.warning("Config: %s", warning)

    store = InMemoryBookingStore()
    notifier = build_notifier(cfg)
    manager = BookingManager(
        store=store,
        tokens=ActionTokenSigner(cfg.token_secret, algorithm=cfg.token_algorithm),
        calendar=build_calendar(cfg),
        notifier=notifier,
        options=LifecycleOptions.from_settings(cfg),
    )
    dispatcher = ReminderDispatcher(store=store, notifier=notifier, base_url=cfg.base_url)
    return manager, dispatcher


# ── Application factory ──────────────────────────────────────────


def create_app(
    manager: Optional[BookingManager] = None,
    dispatcher: Optional[ReminderDispatcher] = None,
    rate_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    if manager is None or dispatcher is None:
        default_manager, default_dispatcher = build_services(settings)
        manager = manager or default_manager
        dispatcher = dispatcher or default_dispatcher
    if rate_limiter is None:
        rate_limiter = RateLimiter(
            settings.booking_rate_limit, settings.booking_rate_window_seconds
        )

    app = FastAPI(
        title="Appointment Booking",
        description="Public booking pages with guest cancel/reschedule links",
        version="0.1.0",
    )
    app.state.manager = manager
    app.state.dispatcher = dispatcher
    app.state.rate_limiter = rate_limiter

    # ── Error rendering ────────────────────────────────────────

    @app.exception_handler(BookingError)
    async def booking_error(request: Request, exc: BookingError) -> JSONResponse:
        status_code = status_for(exc)
        if status_code >= 500:
            log.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        headers = None
        if isinstance(exc, RateLimitedError):
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(
            {"ok": False, "code": exc.code, "error": exc.message},
            status_code=status_code,
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_invalid(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = sorted({str(e["loc"][-1]) for e in exc.errors() if e.get("loc")})
        return JSONResponse(
            {
                "ok": False,
                "code": ValidationError.code,
                "error": "Missing or invalid fields: " + ", ".join(fields),
            },
            status_code=400,
        )

    @app.exception_handler(Exception)
    async def unexpected(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            {"ok": False, "code": "INTERNAL_ERROR", "error": "Internal server error"},
            status_code=500,
        )

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({"status": "ok", "uptime": uptime})

    # ── Public booking page ────────────────────────────────────

    @app.get("/public/{handle}/availability")
    async def availability(
        handle: str,
        request: Request,
        date: str = Query(...),
        duration: Optional[int] = Query(default=None, gt=0, le=24 * 60),
    ) -> JSONResponse:
        rate_limiter.hit(f"availability:ip:{client_ip(request)}")
        result = await manager.list_availability(handle, parse_date(date), duration)
        return JSONResponse(
            {
                "ok": True,
                "date": result.day.isoformat(),
                "timeZone": result.time_zone,
                "duration": result.duration_min,
                "calendarAvailable": result.calendar_available,
                "slots": [
                    {"start": to_iso(s.start_utc), "end": to_iso(s.end_utc)}
                    for s in result.slots
                ],
            }
        )

    @app.post("/public/{handle}/book")
    async def book(handle: str, body: BookRequest, request: Request) -> JSONResponse:
        if not body.name.strip() or not body.email.strip():
            raise ValidationError("Name and email are required")
        rate_limiter.hit(f"book:ip:{client_ip(request)}")
        rate_limiter.hit(f"book:email:{body.email.strip().lower()}")
        guest = {
            "name": body.name,
            "email": body.email,
            "time_zone": body.time_zone,
            "notes": body.notes,
        }
        outcome = await manager.create(
            handle, parse_instant(body.start), parse_instant(body.end), guest
        )
        payload = _outcome_json(outcome)
        payload["cancelToken"] = outcome.cancel_token
        payload["rescheduleToken"] = outcome.reschedule_token
        return JSONResponse(payload, status_code=201)

    # ── Guest action links ─────────────────────────────────────

    @app.get("/public/bookings/{purpose}/verify")
    async def verify_link(purpose: str, token: str = Query(default="")) -> JSONResponse:
        if purpose not in _PURPOSES:
            raise NotFoundError(f"Unknown action '{purpose}'")
        if not token:
            raise ValidationError("Missing token")
        booking = await manager.preview(token, _PURPOSES[purpose])
        return JSONResponse({"ok": True, "booking": booking_json(booking)})

    @app.post("/public/bookings/cancel")
    async def cancel(body: CancelRequest) -> JSONResponse:
        outcome = await manager.cancel(body.booking_id, body.token)
        return JSONResponse(_outcome_json(outcome))

    @app.post("/public/bookings/reschedule")
    async def reschedule(body: RescheduleRequest) -> JSONResponse:
        outcome = await manager.reschedule(
            body.booking_id,
            body.token,
            parse_instant(body.new_start),
            parse_instant(body.new_end),
            guest_time_zone=body.time_zone,
        )
        payload = _outcome_json(outcome)
        payload["rescheduleToken"] = outcome.reschedule_token
        return JSONResponse(payload)

    # ── Admin ──────────────────────────────────────────────────

    @app.post("/admin/reminders/run", dependencies=[Depends(require_admin_token)])
    async def run_reminders() -> JSONResponse:
        report = await dispatcher.run_once()
        return JSONResponse(
            {
                "ok": True,
                "sent": report.sent,
                "failed": report.failed,
                "skipped": report.skipped,
                "errors": report.errors,
            }
        )

    @app.get("/admin/hosts/{host_id}", dependencies=[Depends(require_admin_token)])
    async def get_host(host_id: str) -> JSONResponse:
        host = await manager.store.get_host(host_id)
        if host is None:
            raise NotFoundError(f"Unknown host '{host_id}'")
        return JSONResponse({"ok": True, "host": host_json(host)})

    @app.put("/admin/hosts/{host_id}", dependencies=[Depends(require_admin_token)])
    async def save_host(host_id: str, body: HostSettingsRequest) -> JSONResponse:
        host = await configure_host(manager.store, host_id, body.model_dump(exclude_none=True))
        return JSONResponse({"ok": True, "host": host_json(host)})

    return app


if __name__ == "__main__":
    import uvicorn

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "appointments.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
