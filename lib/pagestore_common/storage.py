"""
Blob storage for captured pages.

Captured HTML and screenshots live in S3; records live in DynamoDB.
S3 failures are raised as StorageError so callers handle a single
persistence error type.
"""

import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from pagestore_common.exceptions import StorageError

logger = logging.getLogger(__name__)


def parse_s3_uri(s3_uri: str) -> tuple[str, str]:
    """
    Parse S3 URI into bucket and key.

    Example:
        bucket, key = parse_s3_uri("s3://pages/acme/3f2a/page.html")
        # bucket = "pages"
        # key = "acme/3f2a/page.html"
    """
    if not s3_uri.startswith("s3://"):
        raise ValueError(f"Invalid S3 URI: {s3_uri}")

    parts = s3_uri[5:].split("/", 1)
    bucket = parts[0]
    key = parts[1] if len(parts) > 1 else ""
    return bucket, key


class BlobStore:
    """Content-addressed blob storage for captured pages, backed by S3."""

    def __init__(self, bucket: str, s3_client=None):
        """
        Args:
            bucket: Destination bucket name
            s3_client: Optional boto3 S3 client
        """
        if not bucket:
            raise ValueError("bucket is required")
        self.bucket = bucket
        self.s3 = s3_client or boto3.client("s3")

    def put(self, key: str, data: bytes, content_type: str) -> str:
        """
        Write bytes under key.

        Returns:
            s3:// URI of the stored object

        Raises:
            StorageError: If the upload fails
        """
        try:
            self.s3.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to write s3://{self.bucket}/{key}: {e}")
            raise StorageError(f"Failed to store blob {key}: {e}") from e

        uri = f"s3://{self.bucket}/{key}"
        logger.debug(f"Wrote {len(data)} bytes to {uri}")
        return uri

    def get(self, uri: str) -> bytes:
        """
        Read bytes from an s3:// URI.

        Raises:
            StorageError: If the object cannot be read
        """
        bucket, key = parse_s3_uri(uri)
        try:
            response = self.s3.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to read {uri}: {e}")
            raise StorageError(f"Failed to read blob {uri}: {e}") from e

    def get_text(self, uri: str, encoding: str = "utf-8") -> str:
        """Read a blob and decode it as text."""
        return self.get(uri).decode(encoding, errors="replace")

    def delete(self, uri: str) -> None:
        """
        Delete the object behind an s3:// URI.

        Raises:
            StorageError: If the delete fails
        """
        bucket, key = parse_s3_uri(uri)
        try:
            self.s3.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to delete {uri}: {e}")
            raise StorageError(f"Failed to delete blob {uri}: {e}") from e
        logger.debug(f"Deleted {uri}")
