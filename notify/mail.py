"""
Outgoing mail for operator alerts.

The worker only enqueues: trigger() returns immediately and delivery runs
on a background thread, so a slow or broken SMTP server never holds up
certificate persistence.
"""
from __future__ import annotations

import logging
import queue
import smtplib
import threading
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass
class MailMessage:
    recipient: str
    subject: str
    body: str            # Rendered HTML
    sender_name: str


class MailDispatcher(Protocol):
    def trigger(self, message: MailMessage) -> None: ...


class LogMailDispatcher:
    """Used when no SMTP host is configured: the alert is only logged."""

    def trigger(self, message: MailMessage) -> None:
        logger.info("Mail disabled (no SMTP_HOST) — would send %r to %s",
                    message.subject, message.recipient)


class SmtpMailDispatcher:
    def __init__(
        self,
        host: str,
        port: int = 25,
        sender: str = "certificates@localhost",
        username: str = "",
        password: str = "",
        starttls: bool = False,
        timeout: int = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout
        self._queue: "queue.Queue[Optional[MailMessage]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    def trigger(self, message: MailMessage) -> None:
        """Enqueue *message*; delivery happens on the sender thread."""
        self._ensure_started()
        self._queue.put(message)

    def close(self, timeout: float = 10) -> None:
        """Flush queued messages and stop the sender thread."""
        if self._thread is None:
            return
        self._queue.put(None)
        self._thread.join(timeout=timeout)
        self._thread = None

    def _ensure_started(self) -> None:
        with self._start_lock:
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name="mail-sender", daemon=True)
                self._thread.start()

    def _run(self) -> None:
        while True:
            message = self._queue.get()
            if message is None:
                return
            try:
                self.send(message)
            except (smtplib.SMTPException, OSError) as exc:
                logger.error("Delivering %r to %s failed: %s", message.subject, message.recipient, exc)

    def send(self, message: MailMessage) -> None:
        email = EmailMessage()
        email["Subject"] = message.subject
        email["From"] = formataddr((message.sender_name, self.sender))
        email["To"] = message.recipient
        email.set_content(message.subject)
        email.add_alternative(message.body, subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(email)
        logger.debug("Delivered %r to %s", message.subject, message.recipient)


def make_dispatcher(settings) -> MailDispatcher:
    if not settings.SMTP_HOST:
        return LogMailDispatcher()
    return SmtpMailDispatcher(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        sender=settings.MAIL_SENDER,
        username=settings.SMTP_USERNAME,
        password=settings.SMTP_PASSWORD,
        starttls=settings.SMTP_STARTTLS,
    )
