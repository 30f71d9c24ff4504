"""Notification sender interface.

Sending is best-effort: implementations report failure by returning False
(or raising, which callers treat the same way), and a failed send never fails
the booking operation that triggered it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from appointments.pii import redact_pii

log = logging.getLogger("appointments.notifications")


@dataclass(frozen=True)
class Attachment:
    filename: str
    content: str
    content_type: str = "text/calendar"


@dataclass(frozen=True)
class OutgoingMessage:
    to: str
    subject: str
    html_body: str
    attachments: tuple[Attachment, ...] = ()
    cc: tuple[str, ...] = field(default=())


class NotificationSender(ABC):
    @abstractmethod
    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        attachments: list[Attachment] | None = None,
        cc: list[str] | None = None,
    ) -> bool:
        """Deliver one message.  Returns True on success."""


class LoggingNotificationSender(NotificationSender):
    """Development sender: logs the message and keeps it in ``outbox``."""

    def __init__(self) -> None:
        self.outbox: list[OutgoingMessage] = []

    async def send(
        self,
        to: str,
        subject: str,
        html_body: str,
        attachments: list[Attachment] | None = None,
        cc: list[str] | None = None,
    ) -> bool:
        self.outbox.append(
            OutgoingMessage(
                to=to,
                subject=subject,
                html_body=html_body,
                attachments=tuple(attachments or ()),
                cc=tuple(cc or ()),
            )
        )
        log.info("Email (not sent) to %s: %s", redact_pii(to), subject)
        return True
