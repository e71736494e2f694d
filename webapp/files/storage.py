"""
Object store adapters.

``S3ObjectStore`` talks to a real bucket through boto3. ``StubObjectStore``
keeps objects in memory and is what test/integration runs use.
"""

from typing import Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from webapp.shared.config import Settings
from webapp.shared.logger import get_logger
from webapp.shared.metrics import observe

logger = get_logger("storage")


class ObjectStoreError(Exception):
    """Raised when the object store rejects or fails an operation."""


class S3ObjectStore:
    def __init__(
        self,
        bucket: str,
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        client=None,
    ):
        self.bucket = bucket
        # no explicit keys: boto3 resolves the instance/task role or the CLI profile
        self.client = client or boto3.client("s3", region_name=region_name, endpoint_url=endpoint_url)
        logger.info(f"Using S3 bucket: {bucket}")

    @observe("s3", "put")
    def put(self, data: bytes, key: str, content_type: str, metadata: Dict[str, str]) -> str:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=metadata,
            )
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"put s3://{self.bucket}/{key} failed: {e}") from e
        return f"s3://{self.bucket}/{key}"

    @observe("s3", "delete")
    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"delete s3://{self.bucket}/{key} failed: {e}") from e

    @observe("s3", "presign")
    def url_for(self, key: str, expires_in: int = 600) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"presign s3://{self.bucket}/{key} failed: {e}") from e


class StubObjectStore:
    def __init__(self, bucket: str = "test-bucket-name"):
        self.bucket = bucket
        self.objects: Dict[str, dict] = {}
        logger.info("Using in-memory object store")

    @observe("s3", "put")
    def put(self, data: bytes, key: str, content_type: str, metadata: Dict[str, str]) -> str:
        self.objects[key] = {"body": data, "content_type": content_type, "metadata": dict(metadata)}
        return f"memory://{self.bucket}/{key}"

    @observe("s3", "delete")
    def delete(self, key: str) -> None:
        # same as S3: deleting a missing key is not an error
        self.objects.pop(key, None)

    @observe("s3", "presign")
    def url_for(self, key: str, expires_in: int = 600) -> str:
        return f"memory://{self.bucket}/{key}?expires_in={expires_in}"


def build_object_store(settings: Settings):
    if settings.is_test:
        return StubObjectStore(settings.S3_BUCKET_NAME)
    return S3ObjectStore(
        settings.S3_BUCKET_NAME,
        region_name=settings.AWS_REGION,
        endpoint_url=settings.AWS_ENDPOINT_URL,
    )
