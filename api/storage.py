"""
Google Drive storage for uploaded book PDFs.

Files are created inside a configured Drive folder, shared so that anyone
with the link can read them, and addressed by a direct-download URL.
"""

import asyncio
import io
import threading
from typing import Any, Dict, Optional

import structlog
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

logger = structlog.get_logger(__name__)

SCOPES = ["https://www.googleapis.com/auth/drive.file"]
DOWNLOAD_URL = "https://drive.google.com/uc?id={file_id}&export=download"


class StorageError(Exception):
    """Raised when a file could not be stored or shared."""


class DriveStorageGateway:
    """Uploads files to a Drive folder and returns public download links."""

    def __init__(self, service: Any, folder_id: Optional[str] = None):
        """
        Args:
            service: Drive v3 service resource
            folder_id: Parent folder for uploads; Drive root when None
        """
        self.service = service
        self.folder_id = folder_id
        # The service's httplib2 transport is not thread-safe
        self._lock = threading.Lock()

    @classmethod
    def from_service_account_info(
        cls,
        info: Dict[str, Any],
        folder_id: Optional[str] = None
    ) -> "DriveStorageGateway":
        """Build a gateway from service account credentials."""
        creds = service_account.Credentials.from_service_account_info(info, scopes=SCOPES)
        service = build("drive", "v3", credentials=creds, cache_discovery=False)
        return cls(service, folder_id)

    def _upload_and_share(self, data: bytes, filename: str, mime_type: str) -> str:
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mime_type, resumable=True)
        metadata: Dict[str, Any] = {"name": filename}
        if self.folder_id:
            metadata["parents"] = [self.folder_id]

        with self._lock:
            created = (
                self.service.files()
                    .create(body=metadata, media_body=media, fields="id")
                    .execute()
            )
            file_id = created.get("id")

            # share publicly
            self.service.permissions().create(
                fileId=file_id,
                body={"role": "reader", "type": "anyone"},
            ).execute()

        return DOWNLOAD_URL.format(file_id=file_id)

    async def upload(self, data: bytes, filename: str, mime_type: str = "application/pdf") -> str:
        """
        Store a file and make it publicly readable.

        Args:
            data: File contents
            filename: Name to give the stored file
            mime_type: Content type of the file

        Returns:
            Direct-download URL for the stored file

        Raises:
            StorageError: If Drive rejects the upload or the share
        """
        try:
            url = await asyncio.to_thread(self._upload_and_share, data, filename, mime_type)
        except HttpError as e:
            logger.error("Drive upload failed", filename=filename, error=str(e))
            raise StorageError(f"Failed to store {filename}") from e

        logger.info("File uploaded to Drive", filename=filename, size=len(data))
        return url
