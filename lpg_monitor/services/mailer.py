"""
Mailer - SMTP delivery for alarm emails
"""

import asyncio
import logging
import smtplib
from email.mime.text import MIMEText

from lpg_monitor.core.config import Settings

logger = logging.getLogger(__name__)


class MailerError(Exception):
    """Base class for email delivery failures."""


class TransportUnavailable(MailerError):
    """SMTP server could not be reached or refused the session."""


class DeliveryFailed(MailerError):
    """SMTP server rejected the message."""


class SMTPMailer:
    """Sends plain-text emails through an SMTP relay."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        sender: str = "",
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.sender = sender or username
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def build_message(self, to: list[str], subject: str, body: str) -> MIMEText:
        msg = MIMEText(body)
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = ", ".join(to)
        return msg

    def send_message(self, to: list[str], subject: str, body: str) -> None:
        """Blocking send; raises TransportUnavailable or DeliveryFailed."""
        msg = self.build_message(to, subject, body)
        conn = None
        try:
            try:
                conn = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
                if self.use_tls:
                    conn.starttls()
                if self.username:
                    conn.login(self.username, self.password)
            except (OSError, smtplib.SMTPException) as e:
                raise TransportUnavailable(f"{self.host}:{self.port}: {e}") from e

            try:
                conn.sendmail(self.sender, to, msg.as_string())
            except (OSError, smtplib.SMTPException) as e:
                raise DeliveryFailed(str(e)) from e
        finally:
            if conn:
                try:
                    conn.quit()
                except (OSError, smtplib.SMTPException) as e:
                    logger.debug(f"SMTP quit failed: {e}")

    async def send_email(self, to: list[str], subject: str, body: str) -> None:
        await asyncio.to_thread(self.send_message, to, subject, body)
        logger.info(f"Email sent to {', '.join(to)}: {subject}")


def build_mailer(settings: Settings) -> SMTPMailer | None:
    """Create the SMTP mailer, or None when no SMTP host is configured."""
    if not settings.email_enabled:
        logger.info("SMTP host not set, alarm emails disabled")
        return None
    return SMTPMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.smtp_sender,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_tls,
        timeout=settings.smtp_timeout_seconds,
    )
