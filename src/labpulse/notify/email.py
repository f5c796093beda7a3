"""E-mail delivery of the lab report over SMTP.

smtplib is blocking, so the send runs in a worker thread.

Usage:
    notifier = EmailNotifier.from_settings(settings)
    result = await notifier.send(report.text)
"""

import asyncio
import logging
import smtplib
from datetime import date
from email.mime.text import MIMEText

from labpulse.config import Settings
from labpulse.errors import NotificationError
from labpulse.notify.base import DeliveryResult

logger = logging.getLogger(__name__)


class EmailNotifier:
    """Sends the report as a plain-text e-mail.

    Args:
        host: SMTP host
        port: SMTP port (default: 587)
        sender: From address
        recipients: To addresses
        username: Optional SMTP login
        password: Optional SMTP password
        starttls: Upgrade the connection with STARTTLS (default: True)
        timeout: Socket timeout in seconds
    """

    def __init__(
        self,
        host: str,
        sender: str,
        recipients: list[str],
        port: int = 587,
        username: str | None = None,
        password: str | None = None,
        starttls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        if not recipients:
            raise ValueError("EmailNotifier needs at least one recipient")
        self.host = host
        self.port = port
        self.sender = sender
        self.recipients = recipients
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailNotifier":
        """Build from SMTP settings. settings.smtp_host must be set."""
        if not settings.smtp_host:
            raise ValueError("smtp_host is not configured")
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.email_from,
            recipients=settings.recipients,
            username=settings.smtp_username,
            password=settings.smtp_password,
            starttls=settings.smtp_starttls,
            timeout=settings.http_timeout,
        )

    def build_message(self, body: str, today: date | None = None) -> MIMEText:
        """Compose the report message."""
        today = today or date.today()
        message = MIMEText(body, "plain", "utf-8")
        message["Subject"] = f"Lab Reports on {today.strftime('%a %b %d %Y')}"
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients)
        return message

    def _deliver(self, message: MIMEText) -> dict:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            return smtp.send_message(message)

    async def send(self, body: str) -> DeliveryResult:
        """Send the report.

        Raises:
            NotificationError: If the SMTP exchange fails
        """
        message = self.build_message(body)
        try:
            refused = await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send email: %s", e)
            raise NotificationError(f"Email delivery failed: {e}") from e

        if refused:
            logger.warning("Recipients refused: %s", sorted(refused))
            return DeliveryResult(
                delivered=len(refused) < len(self.recipients),
                detail=f"refused: {', '.join(sorted(refused))}",
            )

        logger.info("Report emailed to %s", ", ".join(self.recipients))
        return DeliveryResult(delivered=True, detail=f"sent to {len(self.recipients)} recipients")
