"""Notification delivery.

Notifications are best-effort: a failure to deliver is logged and never
changes the outcome of the engine call that produced it. The dispatcher
either delivers inline or hands messages to a small thread pool so a slow
mail server cannot hold a project lock.
"""

from __future__ import annotations

import logging
import smtplib
from concurrent.futures import Future, ThreadPoolExecutor
from email.message import EmailMessage
from typing import Optional, Protocol, runtime_checkable

from openfinancing.errors import NotificationError
from openfinancing.notify.templates import Notification

logger = logging.getLogger(__name__)


@runtime_checkable
class Notifier(Protocol):
    """Delivers a single notification or raises NotificationError."""

    def send(self, notification: Notification) -> None:
        ...


class LogNotifier:
    """Writes notifications to the log and keeps them for inspection."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def send(self, notification: Notification) -> None:
        logger.info("Notify %s: %s", notification.recipient_email, notification.subject)
        self.sent.append(notification)


class SmtpNotifier:
    """Sends notifications as plain-text email over SMTP with STARTTLS."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._timeout = timeout

    def build_message(self, notification: Notification) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self._sender
        msg["To"] = notification.recipient_email
        msg["Subject"] = notification.subject
        msg.set_content(notification.body)
        return msg

    def send(self, notification: Notification) -> None:
        msg = self.build_message(notification)
        try:
            with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as smtp:
                smtp.starttls()
                if self._username:
                    smtp.login(self._username, self._password or "")
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(
                f"Could not mail {notification.recipient_email}: {e}"
            ) from e


class NotificationDispatcher:
    """Routes notifications to a Notifier without ever raising.

    Usage:
        dispatcher = NotificationDispatcher(SmtpNotifier(...), asynchronous=True)
        dispatcher.dispatch(render(NotificationKind.INVESTMENT, email, 7, txs))
        dispatcher.shutdown()
    """

    def __init__(
        self,
        notifier: Notifier,
        enabled: bool = True,
        asynchronous: bool = False,
        max_workers: int = 2,
    ) -> None:
        self._notifier = notifier
        self._enabled = enabled
        self._executor: Optional[ThreadPoolExecutor] = (
            ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")
            if asynchronous else None
        )

    @property
    def notifier(self) -> Notifier:
        return self._notifier

    def dispatch(self, notification: Notification) -> Optional[Future]:
        if not self._enabled or not notification.recipient_email:
            return None
        if self._executor is not None:
            return self._executor.submit(self._deliver, notification)
        self._deliver(notification)
        return None

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    def _deliver(self, notification: Notification) -> None:
        try:
            self._notifier.send(notification)
        except NotificationError as e:
            logger.warning("Notification %s to %s failed: %s",
                           notification.kind.value, notification.recipient_email, e)
        except Exception:
            logger.exception("Unexpected error delivering %s notification",
                             notification.kind.value)
