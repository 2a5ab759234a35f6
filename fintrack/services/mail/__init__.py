"""Outgoing mail package."""

from fintrack.services.mail.smtp_service import (
    MailAttachment,
    MailDeliveryError,
    MailerInterface,
    MailMessage,
    SmtpMailer,
)

__all__ = [
    "MailAttachment",
    "MailDeliveryError",
    "MailerInterface",
    "MailMessage",
    "SmtpMailer",
]
