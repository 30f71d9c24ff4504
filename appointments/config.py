"""Application configuration via environment variables."""

from __future__ import annotations

import logging

from pydantic_settings import BaseSettings

log = logging.getLogger("appointments.config")

_DEV_TOKEN_SECRET = "dev-secret-change-me"


class Settings(BaseSettings):
    # Action tokens (guest cancel / reschedule links)
    token_secret: str = _DEV_TOKEN_SECRET
    token_algorithm: str = "HS256"
    cancel_token_ttl_minutes: int = 60 * 24 * 30
    reschedule_token_ttl_minutes: int = 60 * 48

    # Google Calendar
    google_service_account_json: str = ""

    # Email (Resend)
    resend_api_key: str = ""
    resend_api_url: str = "https://api.resend.com/emails"
    email_from: str = "Bookings <bookings@example.com>"

    # Public links in emails
    base_url: str = "http://localhost:8080"

    # Admin auth
    admin_api_key: str = ""

    # Features
    reminders_enabled: bool = True
    reschedule_enabled: bool = True
    # A failed busy check at commit time blocks the booking when True
    busy_check_fail_closed: bool = False

    # Public booking rate limit, per guest email and per client IP
    booking_rate_limit: int = 10
    booking_rate_window_seconds: int = 60

    # Server
    host: str = "127.0.0.1"
    port: int = 8080
    debug: bool = False
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def validate_startup(self) -> list[str]:
        """Validate configuration at startup. Returns warnings, raises on errors."""
        warnings: list[str] = []
        _placeholders = {"", _DEV_TOKEN_SECRET, "change-me"}

        # Token secret is required outside debug
        if self.token_secret in _placeholders:
            if not self.debug:
                raise ValueError(
                    "TOKEN_SECRET is missing or still a placeholder. "
                    "Set it in .env before serving guest links."
                )
            warnings.append("TOKEN_SECRET is a development placeholder (DEBUG=true).")

        if self.cancel_token_ttl_minutes < 1 or self.reschedule_token_ttl_minutes < 1:
            raise ValueError("Token TTLs must be at least one minute.")

        if self.booking_rate_limit < 1 or self.booking_rate_window_seconds < 1:
            raise ValueError("BOOKING_RATE_LIMIT and its window must be positive.")

        # Admin API key: warn if unset
        if not self.admin_api_key:
            if self.debug:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are open (DEBUG=true)."
                )
            else:
                warnings.append(
                    "ADMIN_API_KEY not set. Admin APIs are locked in production. "
                    "Set ADMIN_API_KEY in .env to enable admin access."
                )

        if not self.resend_api_key:
            warnings.append("RESEND_API_KEY not set; emails are logged, not sent.")

        if not self.google_service_account_json:
            warnings.append(
                "GOOGLE_SERVICE_ACCOUNT_JSON not set; using the in-memory calendar."
            )

        return warnings


settings = Settings()
