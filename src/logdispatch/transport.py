"""
Mail transport: deliver one composed message with an attachment.
"""

from __future__ import annotations

import smtplib
import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Optional

from .config import SmtpSettings
from .diagnostics import get_logger

logger = get_logger("logdispatch.transport")


@dataclass(frozen=True)
class MailMessage:
    """A composed digest: fixed body text plus the log buffer as attachment."""

    sender: str
    recipient: str
    subject: str
    body_text: str
    attachment: bytes
    attachment_name: str = "logs.txt"


@dataclass(frozen=True)
class SendResult:
    """Outcome of one delivery attempt."""

    ok: bool
    reason: Optional[str] = None

    @classmethod
    def success(cls) -> "SendResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, reason: str) -> "SendResult":
        return cls(ok=False, reason=reason)


class MailTransport(ABC):
    """Delivers a :class:`MailMessage`; may fail for network or auth reasons.

    Implementations may either return ``SendResult.failure`` or raise; the
    mail sink treats both as a failed delivery.
    """

    @abstractmethod
    def send(self, message: MailMessage) -> SendResult: ...


class SmtpMailTransport(MailTransport):
    """SMTP delivery with optional STARTTLS and login."""

    def __init__(self, settings: SmtpSettings):
        self._settings = settings

    @property
    def settings(self) -> SmtpSettings:
        return self._settings

    @staticmethod
    def build_email(message: MailMessage) -> EmailMessage:
        email = EmailMessage()
        email["From"] = message.sender
        email["To"] = message.recipient
        email["Subject"] = message.subject
        email.set_content(message.body_text)
        email.add_attachment(
            message.attachment,
            maintype="text",
            subtype="plain",
            filename=message.attachment_name,
        )
        return email

    def send(self, message: MailMessage) -> SendResult:
        cfg = self._settings
        email = self.build_email(message)
        try:
            with smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout_seconds) as client:
                if cfg.use_tls:
                    client.starttls(context=ssl.create_default_context())
                password = cfg.sender_password.get_secret_value()
                if password:
                    client.login(message.sender, password)
                client.send_message(email)
        except (smtplib.SMTPException, OSError) as exc:
            return SendResult.failure(f"{type(exc).__name__}: {exc}")

        logger.info("smtp_message_sent", host=cfg.host, recipient=message.recipient, size=len(message.attachment))
        return SendResult.success()
