"""S3 storage for payment receipt images."""

import logging
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

MAX_RECEIPT_BYTES = 5 * 1024 * 1024


class ReceiptStorage:
    """Uploads customer payment receipts and issues short-lived staff links.

    Receipts are private objects; staff view them through presigned URLs.
    """

    def __init__(self, s3_client: Any, bucket_name: str) -> None:
        """Initialize the receipt storage.

        Args:
            s3_client: Boto3 S3 client
            bucket_name: Bucket holding payment receipts
        """
        self.s3_client = s3_client
        self.bucket_name = bucket_name

    def upload_receipt(self, path: str, content: bytes, content_type: str) -> str | None:
        """Store a receipt image.

        Args:
            path: Object key to store the receipt under
            content: Raw image bytes
            content_type: MIME type of the image

        Returns:
            The stored path, or None on failure
        """
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=path,
                Body=content,
                ContentType=content_type,
            )
            return path

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to upload receipt {path}: {e}")
            return None

    def create_signed_url(self, path: str, ttl_seconds: int = 300) -> str | None:
        """Create a presigned URL to view a receipt.

        Args:
            path: Object key of the receipt
            ttl_seconds: Validity of the URL in seconds

        Returns:
            Presigned URL, or None on failure
        """
        try:
            url: str = self.s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": path},
                ExpiresIn=ttl_seconds,
            )
            return url

        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to sign receipt URL for {path}: {e}")
            return None
