"""Notification senders and message builders."""

from .base import Attachment, LoggingNotificationSender, NotificationSender
from .resend import ResendNotificationSender

__all__ = [
    "Attachment",
    "LoggingNotificationSender",
    "NotificationSender",
    "ResendNotificationSender",
]
