"""
Outgoing Mail over SMTP

Used by the last-wish delivery to send a user's exported data to the
recipients they named.

DESIGN DECISION: Messages are plain models handed to a mailer
interface. Tests and dry runs swap in a fake mailer; production uses
SMTP with STARTTLS.
"""

import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Optional

import structlog
from pydantic import BaseModel, Field
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from fintrack.config import SmtpSettings, get_settings


logger = structlog.get_logger()


class MailDeliveryError(Exception):
    """A message could not be delivered after retries."""
    pass


class MailAttachment(BaseModel):
    file_name: str
    content: bytes
    mime_type: str = "application/json"


class MailMessage(BaseModel):
    to: str = Field(..., min_length=3)
    subject: str = Field(..., max_length=300)
    text_body: str
    html_body: Optional[str] = None
    attachments: list[MailAttachment] = Field(default_factory=list)


class MailerInterface(ABC):

    @abstractmethod
    async def send(self, message: MailMessage) -> None:
        """
        Deliver one message.

        Raises:
            MailDeliveryError: If the message could not be sent
        """
        pass


class SmtpMailer(MailerInterface):
    """Sends mail through an SMTP relay (Gmail by default)."""

    def __init__(self, settings: Optional[SmtpSettings] = None):
        self._settings = settings or get_settings().smtp

    def build_message(self, message: MailMessage) -> EmailMessage:
        email = EmailMessage()
        email["From"] = self._settings.from_address
        email["To"] = message.to
        email["Subject"] = message.subject
        email.set_content(message.text_body)
        if message.html_body:
            email.add_alternative(message.html_body, subtype="html")
        for attachment in message.attachments:
            maintype, _, subtype = attachment.mime_type.partition("/")
            email.add_attachment(
                attachment.content,
                maintype=maintype,
                subtype=subtype or "octet-stream",
                filename=attachment.file_name,
            )
        return email

    @retry(
        retry=retry_if_exception_type((smtplib.SMTPException, OSError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _deliver(self, email: EmailMessage) -> None:
        settings = self._settings
        with smtplib.SMTP(settings.host, settings.port, timeout=settings.timeout_seconds) as smtp:
            if settings.use_tls:
                smtp.starttls()
            if settings.username and settings.password:
                smtp.login(settings.username, settings.password)
            smtp.send_message(email)

    async def send(self, message: MailMessage) -> None:
        try:
            self._deliver(self.build_message(message))
        except (smtplib.SMTPException, OSError) as e:
            logger.error("mail_delivery_failed", to=message.to, error=str(e))
            raise MailDeliveryError(f"Failed to send mail to {message.to}: {e}")
        logger.info("mail_sent", to=message.to, subject=message.subject)
