"""Subjects and HTML bodies for booking notifications."""

from __future__ import annotations

from datetime import datetime
from html import escape
from typing import Optional

from appointments.models.booking import Booking
from appointments.models.host import Host
from appointments.timeutils import ensure_utc, get_zone


def format_when(instant: datetime, time_zone: str) -> str:
    local = ensure_utc(instant).astimezone(get_zone(time_zone))
    return local.strftime("%A, %B %d, %Y at %I:%M %p") + f" ({time_zone})"


def cancel_link(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/bookings/cancel/{token}"


def reschedule_link(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/bookings/reschedule/{token}"


def _manage_links(booking: Booking, base_url: str) -> str:
    links = []
    if booking.reschedule_token:
        links.append(f'<a href="{escape(reschedule_link(base_url, booking.reschedule_token))}">Reschedule</a>')
    if booking.cancel_token:
        links.append(f'<a href="{escape(cancel_link(base_url, booking.cancel_token))}">Cancel</a>')
    if not links:
        return ""
    return "<p>Need to make a change? " + " &middot; ".join(links) + "</p>"


def _wrap(heading: str, body: str) -> str:
    return (
        '<div style="font-family: sans-serif; max-width: 600px; margin: 0 auto;">'
        f"<h2>{escape(heading)}</h2>{body}</div>"
    )


def confirmation_email(booking: Booking, host: Host, base_url: str) -> tuple[str, str]:
    when = format_when(booking.start_time, booking.guest_time_zone)
    subject = f"Your meeting is confirmed – {when}"
    body = (
        f"<p><strong>{escape(booking.title)}</strong> with {escape(host.name or host.email)}</p>"
        f"<p>{escape(when)}</p>"
        + (f"<p>Notes: {escape(booking.notes)}</p>" if booking.notes else "")
        + _manage_links(booking, base_url)
    )
    return subject, _wrap("Meeting confirmed", body)


def cancellation_email(booking: Booking) -> tuple[str, str]:
    when = format_when(booking.start_time, booking.guest_time_zone)
    subject = f"Meeting canceled: {booking.title}"
    body = f"<p>The meeting <strong>{escape(booking.title)}</strong> on {escape(when)} was canceled.</p>"
    return subject, _wrap("Meeting canceled", body)


def host_cancellation_email(booking: Booking) -> tuple[str, str]:
    when = format_when(booking.start_time, booking.time_zone)
    subject = f"Booking canceled: {booking.guest_name} – {booking.title}"
    body = (
        f"<p>{escape(booking.guest_name)} ({escape(booking.guest_email)}) canceled "
        f"<strong>{escape(booking.title)}</strong> on {escape(when)}.</p>"
    )
    return subject, _wrap("Booking canceled", body)


def reschedule_email(
    booking: Booking, old_start: datetime, base_url: str
) -> tuple[str, str]:
    tz = booking.guest_time_zone
    subject = f"Meeting rescheduled: {booking.title}"
    body = (
        f"<p><strong>{escape(booking.title)}</strong></p>"
        f"<p><strong>New time:</strong> {escape(format_when(booking.start_time, tz))}</p>"
        f'<p style="text-decoration: line-through; color: #999;">'
        f"Previous time: {escape(format_when(old_start, tz))}</p>"
        + _manage_links(booking, base_url)
    )
    return subject, _wrap("Meeting rescheduled", body)


def reminder_email(
    booking: Booking, reminder_type: str, base_url: Optional[str] = None
) -> tuple[str, str]:
    lead = "tomorrow" if reminder_type == "24h" else "in one hour"
    when = format_when(booking.start_time, booking.guest_time_zone)
    subject = f"Reminder: {booking.title} {lead}"
    body = f"<p>Your meeting <strong>{escape(booking.title)}</strong> starts {lead}: {escape(when)}.</p>"
    if base_url:
        body += _manage_links(booking, base_url)
    return subject, _wrap("Upcoming meeting", body)
