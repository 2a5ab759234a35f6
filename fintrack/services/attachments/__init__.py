"""Purchase attachment storage package."""

from fintrack.services.attachments.cloudinary_service import (
    AttachmentError,
    AttachmentStoreInterface,
    AttachmentUploadError,
    CloudinaryAttachmentStore,
)

__all__ = [
    "AttachmentError",
    "AttachmentStoreInterface",
    "AttachmentUploadError",
    "CloudinaryAttachmentStore",
]
