"""
Purchase Attachment Storage using Cloudinary

DESIGN DECISION: Receipts and warranty files live in Cloudinary, not
in the record store. Rows only keep the public URL and the Cloudinary
public id needed to delete the file later.

Deleting a file that is already gone counts as success, so the purchase
and user deletion paths can retry freely.
"""

import hashlib
import mimetypes
from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

from fintrack.config import CloudinarySettings, get_settings
from fintrack.models.finance import PurchaseAttachment


logger = structlog.get_logger()


class AttachmentError(Exception):
    """Base exception for attachment storage errors."""
    pass


class AttachmentUploadError(AttachmentError):
    """Failed to upload a file to the attachment store."""
    pass


class AttachmentStoreInterface(ABC):
    """Where purchase attachment files are kept."""

    @abstractmethod
    async def upload(
        self,
        content: bytes,
        file_name: str,
        purchase_id: UUID,
        user_id: UUID,
        mime_type: Optional[str] = None,
    ) -> PurchaseAttachment:
        """
        Store a file and describe it as an (unsaved) attachment record.

        Raises:
            AttachmentUploadError: If the upload fails
        """
        pass

    @abstractmethod
    async def delete(self, public_id: str) -> bool:
        """
        Remove a stored file.

        Returns True when the file is gone afterwards, including when
        it never existed.
        """
        pass


class CloudinaryAttachmentStore(AttachmentStoreInterface):
    """
    Attachment storage in Cloudinary.

    Files are uploaded as resource_type "auto" so images and PDFs both
    work, under {folder}/{user_id}/.
    """

    def __init__(
        self,
        settings: Optional[CloudinarySettings] = None,
        max_upload_bytes: Optional[int] = None,
    ):
        self._settings = settings or get_settings().cloudinary
        self._max_upload_bytes = max_upload_bytes or get_settings().app.max_upload_size_bytes
        self._configured = False

    def _configure(self):
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    def _generate_public_id(self, purchase_id: UUID, file_name: str) -> str:
        """
        Generate a unique public ID for Cloudinary.

        Format: {purchase_id}_{filename_hash}
        """
        filename_hash = hashlib.md5(file_name.encode()).hexdigest()[:8]
        return f"{purchase_id}_{filename_hash}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _upload_file(self, content: bytes, public_id: str, folder: str) -> dict:
        self._configure()
        return cloudinary.uploader.upload(
            content,
            public_id=public_id,
            folder=folder,
            resource_type="auto",
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _destroy_file(self, public_id: str) -> dict:
        self._configure()
        return cloudinary.uploader.destroy(public_id, invalidate=True)

    async def upload(
        self,
        content: bytes,
        file_name: str,
        purchase_id: UUID,
        user_id: UUID,
        mime_type: Optional[str] = None,
    ) -> PurchaseAttachment:
        if len(content) > self._max_upload_bytes:
            raise AttachmentUploadError(
                f"{file_name} is {len(content)} bytes; the limit is {self._max_upload_bytes}"
            )

        try:
            result = self._upload_file(
                content,
                public_id=self._generate_public_id(purchase_id, file_name),
                folder=f"{self._settings.folder}/{user_id}",
            )
        except cloudinary.exceptions.Error as e:
            raise AttachmentUploadError(f"Cloudinary error: {e}")
        except Exception as e:
            raise AttachmentUploadError(f"Failed to upload {file_name}: {e}")

        url = result.get("secure_url", result.get("url", ""))
        if not url:
            raise AttachmentUploadError("No URL returned from Cloudinary")

        mime_type = mime_type or mimetypes.guess_type(file_name)[0] or "application/octet-stream"
        logger.info(
            "attachment_uploaded",
            purchase_id=str(purchase_id),
            public_id=result.get("public_id"),
            bytes=len(content),
        )
        return PurchaseAttachment(
            purchase_id=purchase_id,
            user_id=user_id,
            file_name=file_name,
            file_path=url,
            file_size=result.get("bytes", len(content)),
            file_type=result.get("format") or file_name.rsplit(".", 1)[-1].lower(),
            mime_type=mime_type,
            public_id=result.get("public_id"),
        )

    async def delete(self, public_id: str) -> bool:
        try:
            result = self._destroy_file(public_id)
        except cloudinary.exceptions.Error as e:
            raise AttachmentError(f"Cloudinary error: {e}")

        outcome = result.get("result")
        if outcome not in ("ok", "not found"):
            raise AttachmentError(f"Could not delete {public_id}: {outcome}")
        return True
