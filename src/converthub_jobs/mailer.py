"""Outbound email for job notifications."""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from .config import Settings

logger = logging.getLogger(__name__)


class Mailer(Protocol):
    def send(self, recipient: str, subject: str, body: str, *, high_priority: bool = False) -> None:
        ...


class SmtpMailer:
    """Plain-text mail over SMTP (STARTTLS by default)."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = True,
        sender: str = "noreply@localhost",
        alert_sender: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.alert_sender = alert_sender or sender
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> SmtpMailer | None:
        if not settings.mail_enabled:
            return None
        return cls(
            settings.smtp_host,  # type: ignore[arg-type]
            settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender=settings.mail_from,
            alert_sender=settings.alert_mail_from,
        )

    def build_message(self, recipient: str, subject: str, body: str, *, high_priority: bool = False) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.alert_sender if high_priority else self.sender
        message["To"] = recipient
        message["Subject"] = subject
        if high_priority:
            message["X-Priority"] = "1"
        message.set_content(body, charset="utf-8")
        return message

    def send(self, recipient: str, subject: str, body: str, *, high_priority: bool = False) -> None:
        message = self.build_message(recipient, subject, body, high_priority=high_priority)
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password or "")
            smtp.send_message(message)
        logger.info("Sent mail %r to %s", subject, recipient)
