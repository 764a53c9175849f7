import asyncio
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import List, Optional

import structlog

from core.config import settings

logger = structlog.get_logger(__name__)


class DeliveryError(Exception):
    """Mail could not be handed to the transport; worth retrying."""


class PermanentDeliveryError(DeliveryError):
    """The transport rejected the message outright (e.g. SMTP 550); retrying will not help."""


class Mailer(ABC):
    @abstractmethod
    async def send(self, recipients: List[str], subject: str, html: str) -> Optional[str]:
        """Send one HTML message to all recipients. Returns the message id when known."""
        ...


class SmtpMailer(Mailer):
    """SMTP + STARTTLS. smtplib blocks, so each send runs in a worker thread."""

    def __init__(
        self,
        host: str,
        port: int,
        user: str,
        password: str,
        from_email: str = "",
        from_name: str = "",
        timeout: float = 10,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email or user
        self.from_name = from_name
        self.timeout = timeout

    async def send(self, recipients: List[str], subject: str, html: str) -> Optional[str]:
        return await asyncio.to_thread(self._send_sync, recipients, subject, html)

    def _send_sync(self, recipients: List[str], subject: str, html: str) -> str:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((self.from_name, self.from_email))
        msg["To"] = ", ".join(recipients)
        message_id = make_msgid()
        msg["Message-ID"] = message_id
        msg.attach(MIMEText(html, "html", "utf-8"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                server.starttls()
                server.login(self.user, self.password)
                server.sendmail(self.from_email, recipients, msg.as_string())
        except smtplib.SMTPRecipientsRefused as e:
            raise PermanentDeliveryError("Invalid email address") from e
        except smtplib.SMTPResponseException as e:
            if e.smtp_code == 550:
                raise PermanentDeliveryError("Invalid email address") from e
            raise DeliveryError(f"SMTP error {e.smtp_code}") from e
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"Failed to send email: {e}") from e

        logger.info("Email sent", message_id=message_id, recipients=len(recipients))
        return message_id


class LogMailer(Mailer):
    """Used when SMTP credentials are not configured: logs instead of sending."""

    async def send(self, recipients: List[str], subject: str, html: str) -> Optional[str]:
        logger.warning("Email not configured, message logged only", recipients=recipients, subject=subject)
        return None


def build_mailer() -> Mailer:
    if not settings.smtp_user or not settings.smtp_password:
        return LogMailer()
    return SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        user=settings.smtp_user,
        password=settings.smtp_password,
        from_email=settings.smtp_from_email,
        from_name=settings.smtp_from_name,
        timeout=settings.smtp_timeout,
    )
