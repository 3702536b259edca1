"""
S3 object store client.

Wraps a boto3 S3 client with the three operations the upload pipeline and
the read endpoints need: put a local file under a key, build the public URL
for a key, and presign a GET for private buckets. boto3 is synchronous, so
every call that touches the network runs in a worker thread.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional, Tuple, Union

import boto3
from boto3.exceptions import Boto3Error
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from api.metrics import STORAGE_BYTES_WRITTEN, STORAGE_OPERATIONS_TOTAL
from config import (
    S3_BUCKET,
    S3_ENDPOINT_URL,
    S3_PRIVATE_BUCKET,
    S3_PUBLIC_BASE_URL,
    S3_REGION,
)

logger = logging.getLogger(__name__)

S3_URI_PREFIX = "s3://"

# upload_file switches to multipart above this size
MULTIPART_THRESHOLD = 64 * 1024 * 1024
MULTIPART_CHUNKSIZE = 16 * 1024 * 1024


class ObjectStoreError(Exception):
    """An object store request failed."""


def parse_s3_uri(uri: str) -> Tuple[str, str]:
    """Split ``s3://bucket/key`` into (bucket, key)."""
    if not uri.startswith(S3_URI_PREFIX):
        raise ValueError(f"Not an s3:// URI: {uri}")
    bucket, _, key = uri[len(S3_URI_PREFIX) :].partition("/")
    if not bucket or not key:
        raise ValueError(f"Missing bucket/key in {uri}")
    return bucket, key


class ObjectStore:
    def __init__(
        self,
        bucket: str,
        region: str,
        client: Any,
        public_base_url: str = "",
        private: bool = False,
    ):
        self.bucket = bucket
        self.region = region
        self.client = client
        self.private = private
        self.public_base_url = (public_base_url or f"https://{bucket}.s3.{region}.amazonaws.com").rstrip("/")
        self.transfer_config = TransferConfig(
            multipart_threshold=MULTIPART_THRESHOLD,
            multipart_chunksize=MULTIPART_CHUNKSIZE,
            use_threads=True,
        )

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key.lstrip('/')}"

    def stored_url(self, key: str) -> str:
        """URL persisted on the video record for an object under key."""
        if self.private:
            return f"{S3_URI_PREFIX}{self.bucket}/{key}"
        return self.public_url(key)

    async def put_file(self, key: str, path: Union[str, Path], content_type: str) -> str:
        """Upload a local file and return the URL to persist for it.

        Raises:
            ObjectStoreError: the upload failed
        """
        try:
            size = Path(path).stat().st_size
            await asyncio.to_thread(
                self.client.upload_file,
                str(path),
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
                Config=self.transfer_config,
            )
        # upload_file re-raises ClientError as S3UploadFailedError (a Boto3Error)
        except (Boto3Error, BotoCoreError, ClientError, OSError) as e:
            STORAGE_OPERATIONS_TOTAL.labels(operation="put", result="failed").inc()
            raise ObjectStoreError(f"S3 upload of {key} failed: {e}") from e

        STORAGE_OPERATIONS_TOTAL.labels(operation="put", result="success").inc()
        STORAGE_BYTES_WRITTEN.inc(size)
        logger.info(f"Uploaded {size} bytes to s3://{self.bucket}/{key}")
        return self.stored_url(key)

    async def presign(self, key: str, expires_in: int, bucket: Optional[str] = None) -> str:
        """Presigned GET URL for key, valid for expires_in seconds."""
        try:
            url = await asyncio.to_thread(
                self.client.generate_presigned_url,
                "get_object",
                Params={"Bucket": bucket or self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            STORAGE_OPERATIONS_TOTAL.labels(operation="presign", result="failed").inc()
            raise ObjectStoreError(f"Presigning {key} failed: {e}") from e

        STORAGE_OPERATIONS_TOTAL.labels(operation="presign", result="success").inc()
        return url

    async def sign_video_url(self, url: Optional[str], expires_in: int) -> Optional[str]:
        """Turn a stored ``s3://`` reference into a presigned URL; other URLs pass through."""
        if not url or not url.startswith(S3_URI_PREFIX):
            return url
        bucket, key = parse_s3_uri(url)
        return await self.presign(key, expires_in, bucket=bucket)


_object_store: Optional[ObjectStore] = None


def create_s3_client(region: str = S3_REGION, endpoint_url: Optional[str] = S3_ENDPOINT_URL):
    config = BotoConfig(
        signature_version="s3v4",
        retries={"max_attempts": 3, "mode": "standard"},
    )
    return boto3.client("s3", region_name=region, endpoint_url=endpoint_url, config=config)


def get_object_store() -> ObjectStore:
    """FastAPI dependency returning the process-wide object store."""
    global _object_store
    if _object_store is None:
        if not S3_BUCKET:
            logger.warning("TUBELY_S3_BUCKET is not set; video uploads will fail")
        _object_store = ObjectStore(
            bucket=S3_BUCKET,
            region=S3_REGION,
            client=create_s3_client(),
            public_base_url=S3_PUBLIC_BASE_URL,
            private=S3_PRIVATE_BUCKET,
        )
    return _object_store
