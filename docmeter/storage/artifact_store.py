"""
S3-compatible storage for generated documents.

Uses boto3 against AWS S3 or any S3-compatible endpoint (Cloudflare R2,
MinIO). Documents stay private; callers get time-limited presigned GET URLs.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from docmeter.config import settings
from docmeter.errors import ArtifactStorageError
from docmeter.utils.ids import utcnow

logger = logging.getLogger(__name__)


class ArtifactStore:
    """
    Upload rendered documents and sign download URLs.

    Fails gracefully at construction if not configured; operations then
    raise ArtifactStorageError.
    """

    def __init__(self, client=None, bucket: Optional[str] = None):
        self._client = client
        self._bucket = bucket or settings.artifact_bucket
        if self._client is not None:
            return

        if settings.artifact_endpoint and not (settings.artifact_access_key and settings.artifact_secret_key):
            logger.warning(
                "Artifact storage not configured. "
                "Set ARTIFACT_ACCESS_KEY and ARTIFACT_SECRET_KEY for custom endpoints."
            )
            return

        try:
            self._client = boto3.client(
                's3',
                endpoint_url=settings.artifact_endpoint,
                aws_access_key_id=settings.artifact_access_key,
                aws_secret_access_key=settings.artifact_secret_key,
                region_name=settings.artifact_region,
                config=Config(
                    signature_version='s3v4',
                    s3={'addressing_style': 'path' if settings.artifact_endpoint else 'auto'}
                )
            )
            logger.info(f"Artifact store initialized for bucket: {self._bucket}")
        except BotoCoreError as e:
            logger.error(f"Failed to initialize artifact store: {e}")

    @property
    def is_configured(self) -> bool:
        return self._client is not None

    @property
    def bucket(self) -> str:
        return self._bucket

    @staticmethod
    def key_for(owner_id: str, job_id: str) -> str:
        return f"documents/{owner_id}/{job_id}.pdf"

    def upload(self, object_key: str, data: bytes, content_type: str = "application/pdf"):
        """
        Raises:
            ArtifactStorageError: If the upload fails or storage is not configured
        """
        if not self.is_configured:
            raise ArtifactStorageError(object_key, "storage not configured")
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=object_key,
                Body=data,
                ContentType=content_type,
            )
            logger.debug(f"Uploaded {object_key} ({len(data)} bytes)")
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to upload {object_key}: {e}")
            raise ArtifactStorageError(object_key, str(e))

    def presigned_read_url(self, object_key: str, expiration: Optional[int] = None) -> Tuple[str, datetime]:
        """
        Generate a presigned GET URL.

        Args:
            object_key: The object key
            expiration: URL lifetime in seconds (default from settings)

        Returns:
            (url, expires_at)

        Raises:
            ArtifactStorageError: If signing fails or storage is not configured
        """
        if not self.is_configured:
            raise ArtifactStorageError(object_key, "storage not configured")
        if expiration is None:
            expiration = settings.artifact_url_ttl_seconds
        try:
            url = self._client.generate_presigned_url(
                ClientMethod='get_object',
                Params={'Bucket': self.bucket, 'Key': object_key},
                ExpiresIn=expiration
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to sign URL for {object_key}: {e}")
            raise ArtifactStorageError(object_key, str(e))
        return url, utcnow() + timedelta(seconds=expiration)
