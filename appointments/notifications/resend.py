"""Resend e-mail API sender."""

from __future__ import annotations

import base64
import logging

import httpx

from appointments.pii import redact_pii

from .base import Attachment, NotificationSender

log = logging.getLogger("appointments.notifications.resend")


class ResendNotificationSender(NotificationSender):
    """Posts messages to the Resend HTTP API."""

    def __init__(
        self,
        api_key: str,
        sender: str,
        api_url: str = "https://api.resend.com/emails",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("RESEND_API_KEY is required for the Resend sender")
        self._api_key = api_key
        self._sender = sender
        self._api_url = api_url
        self._timeout = timeout
        self._transport = transport

    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        attachments: list[Attachment] | None = None,
        cc: list[str] | None = None,
    ) -> bool:
        payload: dict = {
            "from": self._sender,
            "to": [to],
            "subject": subject,
            "html": html_body,
        }
        if cc:
            payload["cc"] = list(cc)
        if attachments:
            payload["attachments"] = [
                {
                    "filename": a.filename,
                    "content": base64.b64encode(a.content.encode("utf-8")).decode("ascii"),
                }
                for a in attachments
            ]

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    self._api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            log.error(
                "Resend rejected email to %s (status %s)",
                redact_pii(to),
                exc.response.status_code,
            )
            return False
        except httpx.HTTPError as exc:
            log.error("Resend unreachable for email to %s: %s", redact_pii(to), exc)
            return False

        log.info("Email sent to %s: %s", redact_pii(to), subject)
        return True
