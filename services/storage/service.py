"""Archive of imported NF-e XML files in S3-compatible storage (MinIO).

Purchase invoices keep a pointer (`xml_file_path`) to the original XML so the
document can be downloaded again for audits. Storage is optional: when it is
disabled or unreachable, imports still succeed without an archive path.

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import logging
from datetime import timedelta

from minio import Minio
from minio.error import S3Error
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.shared.config import Settings

logger = logging.getLogger(__name__)

XML_CONTENT_TYPE = "application/xml"


class StorageResult(BaseModel):
    """Result of storage operation.

    Attributes:
        success: Whether operation succeeded
        object_name: Full object path in storage
        bucket: Bucket name
        error: Error message if operation failed
        etag: Object ETag (hash) if available
        size: Object size in bytes if available
    """

    success: bool
    object_name: str | None = None
    bucket: str | None = None
    error: str | None = None
    etag: str | None = None
    size: int | None = None


class DownloadUrlResult(BaseModel):
    """Presigned download link for an archived XML."""

    success: bool
    url: str | None = None
    expires_in_seconds: int | None = None
    error: str | None = None


class XMLArchiveService:
    """Stores and retrieves raw NF-e XML documents."""

    def __init__(self, settings: Settings) -> None:
        """Initialize archive service.

        Args:
            settings: Application settings with storage configuration
        """
        self.settings = settings
        self._client: Minio | None = None
        self._bucket_ready = False

    def _get_client(self) -> Minio:
        """Get or create MinIO client (lazy initialization).

        Raises:
            ValueError: If storage credentials are not configured
        """
        if self._client is None:
            if not (self.settings.storage_access_key and self.settings.storage_secret_key):
                raise ValueError(
                    "Storage credentials not configured. "
                    "Set APP_STORAGE_ACCESS_KEY and APP_STORAGE_SECRET_KEY."
                )

            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                secure=self.settings.storage_secure,
            )
            logger.info(f"MinIO client initialized for endpoint: {self.settings.storage_endpoint}")

        return self._client

    def is_available(self) -> bool:
        """True if archiving is enabled and credentials are set."""
        if not self.settings.storage_enabled:
            return False
        return bool(self.settings.storage_access_key and self.settings.storage_secret_key)

    def health_check(self) -> bool:
        """Check that the storage backend answers."""
        if not self.is_available():
            return False

        try:
            self._get_client().bucket_exists(self.settings.storage_bucket)
            return True
        except Exception as e:
            logger.warning(f"Storage health check failed: {e}")
            return False

    def _ensure_bucket(self) -> None:
        if self._bucket_ready:
            return

        client = self._get_client()
        bucket = self.settings.storage_bucket
        if not client.bucket_exists(bucket):
            client.make_bucket(bucket)
            logger.info(f"Created bucket: {bucket}")

        self._bucket_ready = True

    @retry(
        retry=retry_if_exception_type(S3Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _put_xml(self, data: bytes, object_name: str) -> str | None:
        self._ensure_bucket()
        result = self._get_client().put_object(
            bucket_name=self.settings.storage_bucket,
            object_name=object_name,
            data=io.BytesIO(data),
            length=len(data),
            content_type=XML_CONTENT_TYPE,
        )
        return result.etag

    def archive_xml(self, content: str | bytes, object_name: str) -> StorageResult:
        """Upload an NF-e XML document.

        S3 errors are retried up to three times before being reported.

        Args:
            content: XML text or its UTF-8 bytes
            object_name: Target object name, e.g. nfe/<access key>.xml

        Returns:
            StorageResult with upload details or the error
        """
        bucket = self.settings.storage_bucket
        data = content.encode("utf-8") if isinstance(content, str) else content

        try:
            etag = self._put_xml(data, object_name)
        except S3Error as e:
            logger.error(f"S3 error archiving {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=f"S3 error: {e.code} - {e.message}",
            )
        except Exception as e:
            logger.error(f"Error archiving {object_name}: {e}")
            return StorageResult(
                success=False, object_name=object_name, bucket=bucket, error=str(e)
            )

        logger.info(f"Archived {object_name} to {bucket} ({len(data)} bytes)")
        return StorageResult(
            success=True, object_name=object_name, bucket=bucket, etag=etag, size=len(data)
        )

    def get_download_url(self, object_name: str, expires_seconds: int = 3600) -> DownloadUrlResult:
        """Presigned URL for downloading an archived XML."""
        try:
            url = self._get_client().presigned_get_object(
                bucket_name=self.settings.storage_bucket,
                object_name=object_name,
                expires=timedelta(seconds=expires_seconds),
            )
        except S3Error as e:
            logger.error(f"S3 error generating download URL for {object_name}: {e}")
            return DownloadUrlResult(success=False, error=f"S3 error: {e.code} - {e.message}")
        except Exception as e:
            logger.error(f"Error generating download URL for {object_name}: {e}")
            return DownloadUrlResult(success=False, error=str(e))

        return DownloadUrlResult(success=True, url=url, expires_in_seconds=expires_seconds)

    def delete_archived(self, object_name: str) -> StorageResult:
        """Remove an archived XML, e.g. when its purchase invoice is deleted."""
        bucket = self.settings.storage_bucket

        try:
            self._get_client().remove_object(bucket_name=bucket, object_name=object_name)
        except S3Error as e:
            logger.error(f"S3 error deleting {object_name}: {e}")
            return StorageResult(
                success=False,
                object_name=object_name,
                bucket=bucket,
                error=f"S3 error: {e.code} - {e.message}",
            )
        except Exception as e:
            logger.error(f"Error deleting {object_name}: {e}")
            return StorageResult(
                success=False, object_name=object_name, bucket=bucket, error=str(e)
            )

        logger.info(f"Deleted {object_name} from {bucket}")
        return StorageResult(success=True, object_name=object_name, bucket=bucket)
