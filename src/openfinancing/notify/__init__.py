"""Best-effort participant notifications."""

from openfinancing.notify.notifier import (
    LogNotifier,
    NotificationDispatcher,
    Notifier,
    SmtpNotifier,
)
from openfinancing.notify.templates import Notification, NotificationKind, render

__all__ = [
    "LogNotifier",
    "NotificationDispatcher",
    "Notifier",
    "SmtpNotifier",
    "Notification",
    "NotificationKind",
    "render",
]
