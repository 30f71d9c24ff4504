"""Tests for action token signing and verification."""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from appointments.errors import TokenInvalidError
from appointments.tokens import (
    CANCEL_BOOKING,
    RESCHEDULE_BOOKING,
    ActionTokenSigner,
    token_hash,
)

from conftest import FixedClock


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 6, 1, tzinfo=timezone.utc))


@pytest.fixture
def signer(clock):
    return ActionTokenSigner("s3cret", clock=clock)


class TestSign:
    def test_claims(self, signer, clock):
        signed = signer.sign("booking-1", CANCEL_BOOKING, 60, extra={"email": "bob@example.com"})
        claims = jwt.get_unverified_claims(signed.token)
        assert claims["sub"] == "booking-1"
        assert claims["purpose"] == CANCEL_BOOKING
        assert claims["nonce"] == signed.nonce
        assert claims["email"] == "bob@example.com"
        assert claims["exp"] == signed.expires_at
        assert signed.expires_at == int(clock.now.timestamp()) + 3600

    def test_extra_cannot_override_reserved_claims(self, signer):
        signed = signer.sign("booking-1", CANCEL_BOOKING, 60, extra={"sub": "other", "purpose": "x"})
        claims = jwt.get_unverified_claims(signed.token)
        assert claims["sub"] == "booking-1"
        assert claims["purpose"] == CANCEL_BOOKING

    def test_nonce_unique(self, signer):
        a = signer.sign("booking-1", CANCEL_BOOKING, 60)
        b = signer.sign("booking-1", CANCEL_BOOKING, 60)
        assert a.nonce != b.nonce
        assert a.token != b.token
        assert token_hash(a.token) != token_hash(b.token)

    def test_empty_secret_rejected(self):
        with pytest.raises(ValueError):
            ActionTokenSigner("")

    @pytest.mark.parametrize("ttl", [0, -5])
    def test_non_positive_ttl_rejected(self, signer, ttl):
        with pytest.raises(ValueError, match="ttl_minutes"):
            signer.sign("booking-1", CANCEL_BOOKING, ttl)

    def test_empty_purpose_rejected(self, signer):
        with pytest.raises(ValueError):
            signer.sign("booking-1", "", 60)


class TestVerify:
    def test_valid(self, signer):
        signed = signer.sign("booking-1", RESCHEDULE_BOOKING, 60)
        result = signer.verify(signed.token, RESCHEDULE_BOOKING)
        assert result.valid
        assert result.claims["sub"] == "booking-1"
        assert result.reason is None

    def test_wrong_purpose(self, signer):
        signed = signer.sign("booking-1", CANCEL_BOOKING, 60)
        result = signer.verify(signed.token, RESCHEDULE_BOOKING)
        assert not result.valid
        assert result.reason == "wrong_purpose"

    def test_expired(self, signer, clock):
        signed = signer.sign("booking-1", CANCEL_BOOKING, 30)
        clock.advance(minutes=30)
        result = signer.verify(signed.token, CANCEL_BOOKING)
        assert not result.valid
        assert result.reason == "expired"

    def test_valid_until_expiry(self, signer, clock):
        signed = signer.sign("booking-1", CANCEL_BOOKING, 30)
        clock.advance(minutes=29, seconds=59)
        assert signer.verify(signed.token, CANCEL_BOOKING).valid

    def test_tampered_payload(self, signer):
        signed = signer.sign("booking-1", CANCEL_BOOKING, 60)
        header, payload, sig = signed.token.split(".")
        forged_payload = jwt.encode(
            {"sub": "booking-2", "purpose": CANCEL_BOOKING, "exp": 9999999999}, "x"
        ).split(".")[1]
        result = signer.verify(".".join([header, forged_payload, sig]), CANCEL_BOOKING)
        assert not result.valid
        assert result.reason == "bad_signature"

    def test_other_secret(self, signer, clock):
        other = ActionTokenSigner("different", clock=clock)
        signed = other.sign("booking-1", CANCEL_BOOKING, 60)
        assert signer.verify(signed.token, CANCEL_BOOKING).reason == "bad_signature"

    @pytest.mark.parametrize("token", ["", "not-a-token", "a.b", "a.b.c"])
    def test_malformed(self, signer, token):
        result = signer.verify(token, CANCEL_BOOKING)
        assert not result.valid
        assert result.reason == "malformed"

    def test_missing_exp_is_malformed(self, signer):
        token = jwt.encode({"sub": "booking-1", "purpose": CANCEL_BOOKING}, "s3cret", algorithm="HS256")
        assert signer.verify(token, CANCEL_BOOKING).reason == "malformed"


class TestRequire:
    def test_returns_claims(self, signer):
        signed = signer.sign("booking-1", CANCEL_BOOKING, 60)
        assert signer.require(signed.token, CANCEL_BOOKING)["sub"] == "booking-1"

    def test_raises_with_kind(self, signer, clock):
        signed = signer.sign("booking-1", CANCEL_BOOKING, 1)
        clock.advance(hours=1)
        with pytest.raises(TokenInvalidError) as exc_info:
            signer.require(signed.token, CANCEL_BOOKING)
        assert exc_info.value.kind == "expired"
        assert exc_info.value.code == "TOKEN_EXPIRED"

    def test_malformed_code(self, signer):
        with pytest.raises(TokenInvalidError) as exc_info:
            signer.require("a.b.c", CANCEL_BOOKING)
        assert exc_info.value.code == "TOKEN_INVALID"
