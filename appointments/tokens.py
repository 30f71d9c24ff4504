"""Signed, purpose-bound, expiring action tokens for guest links.

A token is an HS256 JWT carrying ``sub`` (booking id), ``purpose``, a random
``nonce``, ``iat`` and ``exp``.  Verification is stateless: it checks the
signature, the expiry and the purpose, and nothing else.  Replay protection
lives in the booking store as a usage marker keyed by :func:`token_hash`,
checked and flipped by the lifecycle manager at the point of use.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from jose import JWTError, jwt

from appointments.errors import TokenInvalidError
from appointments.timeutils import utc_now

log = logging.getLogger("appointments.tokens")

CANCEL_BOOKING = "cancel_booking"
RESCHEDULE_BOOKING = "reschedule_booking"

_RESERVED_CLAIMS = {"sub", "purpose", "nonce", "iat", "exp"}


@dataclass(frozen=True)
class SignedToken:
    token: str
    expires_at: int  # epoch seconds
    nonce: str


@dataclass(frozen=True)
class TokenVerification:
    """Outcome of :meth:`ActionTokenSigner.verify`.

    ``reason`` is ``None`` when valid, otherwise one of ``malformed``,
    ``bad_signature``, ``expired`` or ``wrong_purpose``.
    """

    valid: bool
    claims: Optional[dict[str, Any]] = None
    reason: Optional[str] = None


def token_hash(token: str) -> str:
    """Storage key for a token's usage marker (the raw token is never stored there)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class ActionTokenSigner:
    """Signs and verifies action tokens with a shared secret."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if not secret:
            raise ValueError("Action token secret must not be empty")
        self._secret = secret
        self._algorithm = algorithm
        self._clock = clock

    def sign(
        self,
        subject_id: str,
        purpose: str,
        ttl_minutes: int,
        extra: dict[str, Any] | None = None,
    ) -> SignedToken:
        if not purpose:
            raise ValueError("purpose required")
        if int(ttl_minutes) < 1:
            raise ValueError("ttl_minutes must be at least 1")
        now = int(self._clock().timestamp())
        exp = now + int(ttl_minutes) * 60
        nonce = secrets.token_urlsafe(16)

        claims = {k: v for k, v in (extra or {}).items() if k not in _RESERVED_CLAIMS}
        claims.update(
            {"sub": subject_id, "purpose": purpose, "nonce": nonce, "iat": now, "exp": exp}
        )
        token = jwt.encode(claims, self._secret, algorithm=self._algorithm)
        return SignedToken(token=token, expires_at=exp, nonce=nonce)

    def verify(self, token: str, expected_purpose: str) -> TokenVerification:
        """Check signature, expiry and purpose.  Does not check replay."""
        try:
            jwt.get_unverified_claims(token)
        except (JWTError, AttributeError, TypeError):
            return TokenVerification(valid=False, reason="malformed")

        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False, "verify_iat": False},
            )
        except JWTError as exc:
            log.info("Action token signature rejected: %s", exc)
            return TokenVerification(valid=False, reason="bad_signature")

        if not isinstance(claims.get("exp"), int) or not claims.get("sub"):
            return TokenVerification(valid=False, reason="malformed")
        if claims["exp"] <= int(self._clock().timestamp()):
            return TokenVerification(valid=False, claims=claims, reason="expired")
        if claims.get("purpose") != expected_purpose:
            return TokenVerification(valid=False, claims=claims, reason="wrong_purpose")

        return TokenVerification(valid=True, claims=claims)

    def require(self, token: str, expected_purpose: str) -> dict[str, Any]:
        """Like :meth:`verify` but raises :class:`TokenInvalidError`."""
        result = self.verify(token, expected_purpose)
        if not result.valid:
            raise TokenInvalidError(result.reason or "malformed")
        return result.claims or {}
