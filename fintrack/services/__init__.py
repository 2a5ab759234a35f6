"""Services package."""

from fintrack.services.attachments import (
    AttachmentError,
    AttachmentStoreInterface,
    AttachmentUploadError,
    CloudinaryAttachmentStore,
)
from fintrack.services.mail import (
    MailAttachment,
    MailDeliveryError,
    MailerInterface,
    MailMessage,
    SmtpMailer,
)
from fintrack.services.storage import (
    ActivityStorageInterface,
    ConnectionError,
    DuplicateError,
    FinanceStorageInterface,
    GoogleSheetsClient,
    GoogleSheetsStorage,
    InMemoryStorage,
    IntegrityError,
    NotFoundError,
    SqlAlchemyStorage,
    StorageError,
)

__all__ = [
    # Attachment storage
    "AttachmentError",
    "AttachmentStoreInterface",
    "AttachmentUploadError",
    "CloudinaryAttachmentStore",
    # Mail
    "MailAttachment",
    "MailDeliveryError",
    "MailerInterface",
    "MailMessage",
    "SmtpMailer",
    # Storage services
    "ActivityStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "FinanceStorageInterface",
    "GoogleSheetsClient",
    "GoogleSheetsStorage",
    "InMemoryStorage",
    "IntegrityError",
    "NotFoundError",
    "SqlAlchemyStorage",
    "StorageError",
]
