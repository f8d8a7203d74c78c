"""
Outbound mail delivery.

SmtpNotifier sends through smtplib in a worker thread; LoggingNotifier only
logs and is used when no SMTP host is configured. Both return False on
failure instead of raising.
"""
from __future__ import annotations

import abc
import asyncio
import smtplib
from email.message import EmailMessage

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class Notifier(abc.ABC):
    @abc.abstractmethod
    async def send(self, recipients: list[str], subject: str, body_html: str) -> bool:
        """Deliver one message to all recipients. Never raises."""
        ...


class LoggingNotifier(Notifier):
    async def send(self, recipients: list[str], subject: str, body_html: str) -> bool:
        logger.info("notification_logged", recipients=recipients, subject=subject, size=len(body_html))
        return True


class SmtpNotifier(Notifier):
    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def _message(self, recipients: list[str], subject: str, body_html: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self._settings.mail_sender
        msg["To"] = ", ".join(recipients)
        msg.set_content("Diese Nachricht benötigt einen HTML-fähigen Mail-Client.")
        msg.add_alternative(body_html, subtype="html")
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        s = self._settings
        with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout_s) as smtp:
            smtp.ehlo()
            if s.smtp_starttls:
                smtp.starttls()
                smtp.ehlo()
            if s.smtp_user and s.smtp_password:
                smtp.login(s.smtp_user, s.smtp_password)
            smtp.send_message(msg)

    async def send(self, recipients: list[str], subject: str, body_html: str) -> bool:
        if not recipients:
            return False
        msg = self._message(recipients, subject, body_html)
        try:
            await asyncio.to_thread(self._deliver, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("notification_send_failed", recipients=len(recipients), subject=subject, error=str(exc))
            return False
        logger.info("notification_sent", recipients=len(recipients), subject=subject)
        return True


def build_notifier(settings: Settings | None = None) -> Notifier:
    settings = settings or get_settings()
    if settings.smtp_host:
        return SmtpNotifier(settings)
    logger.warning("smtp_not_configured", fallback="logging")
    return LoggingNotifier()
