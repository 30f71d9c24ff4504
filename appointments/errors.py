"""Error taxonomy for the booking engine.

Every failure a caller can react to has its own class and a stable ``code``
so a client can tell "slot taken" apart from "link already used" apart from
"link expired".  Collaborator failures (calendar, e-mail) are deliberately
absent from the lifecycle's raised errors: they are logged and degrade the
operation instead.
"""

from __future__ import annotations


class BookingError(Exception):
    """Base exception for booking engine errors."""

    code = "BOOKING_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class ValidationError(BookingError):
    """Malformed input: missing fields, bad dates, inverted intervals."""

    code = "VALIDATION_ERROR"


class NotFoundError(BookingError):
    """Unknown host handle or booking id."""

    code = "NOT_FOUND"


class ForbiddenError(BookingError):
    """Token is genuine but bound to a different guest."""

    code = "FORBIDDEN"


class ConflictError(BookingError):
    """Requested slot is no longer free; re-fetch availability."""

    code = "SLOT_UNAVAILABLE"


class AlreadyCanceledError(BookingError):
    code = "ALREADY_CANCELED"


class TokenInvalidError(BookingError):
    """Token failed verification.

    ``kind`` is one of ``malformed``, ``bad_signature``, ``expired``,
    ``wrong_purpose`` or ``unknown`` (well-formed but never issued here).
    """

    code = "TOKEN_INVALID"

    def __init__(self, kind: str, message: str | None = None) -> None:
        self.kind = kind
        super().__init__(message or f"Action token rejected ({kind})")
        if kind == "expired":
            self.code = "TOKEN_EXPIRED"


class TokenUsedError(BookingError):
    """Token was already consumed (replay)."""

    code = "TOKEN_USED"


class RateLimitedError(BookingError):
    """Too many public requests from one guest or address."""

    code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after: int = 0) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class CollaboratorUnavailable(BookingError):
    """Calendar or notification provider failed."""

    code = "COLLABORATOR_UNAVAILABLE"
