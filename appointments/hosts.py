"""Host booking-page settings.

``configure_host`` applies a partial settings update: fields that are not
given keep their stored value, and a new host starts from the defaults below.
The handle is stored lowercased and must be unique across hosts.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from appointments.errors import ValidationError
from appointments.models.host import Host, ReminderPreferences, SchedulingPolicy
from appointments.store.base import BookingStore

log = logging.getLogger("appointments.hosts")

DEFAULT_WORKING_HOURS: dict[str, list[dict[str, str]]] = {
    day: [{"start": "09:00", "end": "17:00"}] for day in ("mon", "tue", "wed", "thu", "fri")
}

_HOST_FIELDS = {"handle", "email", "name"}


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ()))
        parts.append(f"{loc}: {error['msg']}" if loc else error["msg"])
    return "Invalid host settings: " + "; ".join(parts)


def _merge_reminders(current: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    merged = {**current, **{k: v for k, v in changes.items() if k != "types"}}
    if changes.get("types"):
        merged["types"] = {**current.get("types", {}), **changes["types"]}
    return merged


async def configure_host(store: BookingStore, host_id: str, changes: dict[str, Any]) -> Host:
    """Create or update ``host_id`` with ``changes`` and persist it.

    ``changes`` uses the model field names: ``handle``, ``email``, ``name``
    and any :class:`SchedulingPolicy` field, with ``reminders`` as a partial
    :class:`ReminderPreferences` mapping.
    """
    unknown = set(changes) - _HOST_FIELDS - set(SchedulingPolicy.model_fields)
    if unknown:
        raise ValidationError(f"Unknown host settings: {', '.join(sorted(unknown))}")

    existing = await store.get_host(host_id)
    if existing is None:
        host_fields: dict[str, Any] = {"id": host_id}
        policy_fields: dict[str, Any] = {"working_hours": DEFAULT_WORKING_HOURS}
    else:
        host_fields = existing.model_dump(exclude={"policy"})
        policy_fields = existing.policy.model_dump()

    for key, value in changes.items():
        if key == "handle":
            host_fields["handle"] = str(value).strip().lower()
        elif key in _HOST_FIELDS:
            host_fields[key] = value
        elif key == "reminders":
            current = policy_fields.get("reminders") or ReminderPreferences().model_dump()
            policy_fields["reminders"] = _merge_reminders(current, value or {})
        else:
            policy_fields[key] = value

    if not host_fields.get("handle") or not host_fields.get("email"):
        raise ValidationError("A new host needs a handle and an email")

    try:
        host = Host(**host_fields, policy=SchedulingPolicy(**policy_fields))
    except PydanticValidationError as exc:
        raise ValidationError(_describe(exc)) from None

    await store.save_host(host)
    log.info(
        "Host %s %s with handle %s",
        host_id, "created" if existing is None else "updated", host.handle,
    )
    return host
