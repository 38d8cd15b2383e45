"""S3-compatible storage backend.

Supports AWS S3 and S3-compatible providers (GCS interoperability mode,
NCP Object Storage, MinIO) through boto3. Object reads and writes stream
through the pipe adapter, one part in flight per transfer.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import BotoCoreError, ClientError

from datamold.errors import (
    BucketConflictError,
    BucketNotFoundError,
    ObjectListError,
    StorageError,
)
from datamold.storage.base import ObjectInfo, StorageBackend
from datamold.storage.pipe import (
    DEFAULT_PIPE_BUFFER,
    ReadHandle,
    WriteHandle,
    open_for_read,
    open_for_write,
)

logger = logging.getLogger(__name__)

__all__ = ["S3Storage", "DEFAULT_PART_SIZE", "DELETE_BATCH_SIZE"]

DEFAULT_PART_SIZE = 128 * 1024 * 1024
# DeleteObjects accepts at most 1000 keys per request.
DELETE_BATCH_SIZE = 1000

_MISSING_BUCKET_CODES = {"404", "NoSuchBucket", "NotFound"}


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _batched(keys: List[str], size: int) -> Iterator[List[str]]:
    for start in range(0, len(keys), size):
        yield keys[start : start + size]


class S3Storage(StorageBackend):
    """S3-compatible storage backend using boto3.

    Example:
        >>> storage = S3Storage("dummy-bucket", region="ap-northeast-2")
        >>> storage.create_bucket()
        >>> with storage.create("txt/artifact_0.txt") as handle:
        ...     handle.write(b"hello")
        >>> [obj.key for obj in storage.object_list()]
        ['txt/artifact_0.txt']

    Args:
        bucket: Bucket name
        provider: Provider name; only 'aws' sends a location constraint
        region: Region for the client and for bucket creation
        client: Pre-built boto3 S3 client (credentials options are ignored)
        endpoint_url: Custom endpoint (MinIO, NCP, GCS interoperability)
        access_key: Access key id
        secret_key: Secret access key
        part_size: Multipart chunk size and threshold in bytes
        page_size: MaxKeys for each ListObjectsV2 page
        pipe_buffer: In-memory pipe capacity for streaming handles
    """

    def __init__(
        self,
        bucket: str,
        *,
        provider: str = "aws",
        region: Optional[str] = None,
        client: Any = None,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        part_size: int = DEFAULT_PART_SIZE,
        page_size: int = 1000,
        pipe_buffer: int = DEFAULT_PIPE_BUFFER,
    ) -> None:
        if not bucket:
            raise ValueError("bucket is required for S3 storage")
        super().__init__(bucket)

        self.provider = provider
        self.region = region
        self.page_size = page_size
        self.pipe_buffer = pipe_buffer

        if client is None:
            session_kwargs: Dict[str, Any] = {}
            if access_key and secret_key:
                session_kwargs["aws_access_key_id"] = access_key
                session_kwargs["aws_secret_access_key"] = secret_key
            try:
                client = boto3.client(
                    "s3",
                    endpoint_url=endpoint_url,
                    region_name=region,
                    **session_kwargs,
                )
            except (BotoCoreError, ValueError) as e:
                logger.error("Failed to create S3 client: %s", e)
                raise
            logger.debug(
                "Created S3 client for bucket '%s' with endpoint: %s",
                bucket,
                endpoint_url or "default",
            )
        self.client = client

        self.transfer_config = TransferConfig(
            multipart_threshold=part_size,
            multipart_chunksize=part_size,
            max_concurrency=1,
            use_threads=False,
        )

    @property
    def scheme(self) -> str:
        return "s3"

    def _storage_error(self, message: str, exc: BaseException) -> StorageError:
        return StorageError(
            message, provider=self.provider, bucket=self.bucket, cause=exc
        )

    def create_bucket(self) -> None:
        """Create the bucket unless we already own it.

        AWS requires a location constraint outside us-east-1; other
        providers reject it, so it is only sent for provider 'aws'.
        """
        try:
            self.client.head_bucket(Bucket=self.bucket)
            logger.debug("Bucket %s already exists", self.bucket)
            return
        except ClientError as e:
            if _error_code(e) not in _MISSING_BUCKET_CODES:
                raise BucketConflictError(
                    f"Bucket {self.bucket} exists but is not accessible",
                    provider=self.provider,
                    bucket=self.bucket,
                    cause=e,
                ) from e

        params: Dict[str, Any] = {"Bucket": self.bucket}
        if self.provider == "aws" and self.region and self.region != "us-east-1":
            params["CreateBucketConfiguration"] = {"LocationConstraint": self.region}

        try:
            self.client.create_bucket(**params)
        except ClientError as e:
            code = _error_code(e)
            if code == "BucketAlreadyOwnedByYou":
                return
            if code == "BucketAlreadyExists":
                raise BucketConflictError(
                    f"Bucket {self.bucket} is owned by another account",
                    provider=self.provider,
                    bucket=self.bucket,
                    cause=e,
                ) from e
            raise self._storage_error(f"Failed to create bucket {self.bucket}", e) from e
        logger.info("Created bucket %s", self.bucket)

    def delete_bucket(self) -> None:
        """Empty the bucket in DeleteObjects batches, then delete it.

        A failed batch leaves the bucket partially emptied; nothing is
        retried.
        """
        objects = self.object_list()
        keys = [obj.key for obj in objects]

        for batch in _batched(keys, DELETE_BATCH_SIZE):
            try:
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
                )
            except ClientError as e:
                raise self._storage_error(
                    f"Failed to delete objects from bucket {self.bucket}", e
                ) from e
            errors = response.get("Errors") or []
            if errors:
                first = errors[0]
                raise StorageError(
                    f"Failed to delete {len(errors)} object(s) from bucket {self.bucket}",
                    provider=self.provider,
                    bucket=self.bucket,
                    details={
                        "key": first.get("Key"),
                        "code": first.get("Code"),
                        "error_message": first.get("Message"),
                    },
                )
            logger.debug("Deleted %d objects from %s", len(batch), self.bucket)

        try:
            self.client.delete_bucket(Bucket=self.bucket)
        except ClientError as e:
            if _error_code(e) in _MISSING_BUCKET_CODES:
                raise BucketNotFoundError(
                    f"Bucket {self.bucket} does not exist",
                    provider=self.provider,
                    bucket=self.bucket,
                    cause=e,
                ) from e
            raise self._storage_error(f"Failed to delete bucket {self.bucket}", e) from e
        logger.info("Deleted bucket %s (%d objects)", self.bucket, len(keys))

    def object_list(self) -> List[ObjectInfo]:
        objects: List[ObjectInfo] = []
        token: Optional[str] = None
        pages = 0

        while True:
            params: Dict[str, Any] = {"Bucket": self.bucket, "MaxKeys": self.page_size}
            if token:
                params["ContinuationToken"] = token
            try:
                response = self.client.list_objects_v2(**params)
            except (ClientError, BotoCoreError) as e:
                if (
                    pages == 0
                    and isinstance(e, ClientError)
                    and _error_code(e) in _MISSING_BUCKET_CODES
                ):
                    raise BucketNotFoundError(
                        f"Bucket {self.bucket} does not exist",
                        provider=self.provider,
                        bucket=self.bucket,
                        cause=e,
                    ) from e
                raise ObjectListError(
                    f"Listing bucket {self.bucket} failed after {pages} page(s)",
                    objects=objects,
                    provider=self.provider,
                    bucket=self.bucket,
                    cause=e,
                ) from e

            pages += 1
            for obj in response.get("Contents", []):
                objects.append(
                    ObjectInfo(
                        key=obj["Key"],
                        size=int(obj.get("Size", 0)),
                        last_modified=obj["LastModified"],
                        etag=obj.get("ETag", ""),
                        storage_class=str(obj.get("StorageClass", "")),
                    )
                )

            token = response.get("NextContinuationToken")
            if not token:
                break

        logger.debug(
            "Listed %d objects in %s across %d page(s)", len(objects), self.bucket, pages
        )
        return objects

    def open(self, name: str) -> ReadHandle:
        def _download(fileobj: Any) -> None:
            self.client.download_fileobj(
                self.bucket, name, fileobj, Config=self.transfer_config
            )

        return open_for_read(_download, name, buffer_size=self.pipe_buffer)

    def create(self, name: str) -> WriteHandle:
        def _upload(fileobj: Any) -> None:
            self.client.upload_fileobj(
                fileobj, self.bucket, name, Config=self.transfer_config
            )

        return open_for_write(_upload, name, buffer_size=self.pipe_buffer)
