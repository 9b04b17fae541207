"""AWS S3 storage backend implementation.

Note: This module handles PHI-related file storage in S3.
- Access Control: Implement strict access control for S3 operations and bucket management

boto3 is synchronous; every SDK call is dispatched to the event loop's
executor so the backend can be awaited alongside HTTP work.
"""

import asyncio
import functools
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote, urlencode

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from fhir_documents.config import Settings
from fhir_documents.config.base import MIB, MIN_MULTIPART_PART_SIZE
from fhir_documents.core.exceptions import StorageError
from fhir_documents.storage.base import (
    DEFAULT_CONTENT_TYPE,
    BlobStore,
    ObjectInfo,
    UploadResult,
    validate_location,
)
from fhir_documents.utils.logging import get_logger

logger = get_logger(__name__)

NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in NOT_FOUND_CODES


class S3BlobStore(BlobStore):
    """S3 implementation of the archive blob store.

    Payloads below ``multipart_threshold`` bytes are written with a single
    ``PutObject``; larger ones use a multipart upload with ``part_size`` parts
    uploaded in order. A multipart upload that fails or is cancelled after it
    was initiated is aborted before the error propagates.
    """

    def __init__(
        self,
        s3_client: Any,
        multipart_threshold: int = 100 * MIB,
        part_size: int = 10 * MIB,
        storage_class: Optional[str] = "STANDARD_IA",
        server_side_encryption: Optional[str] = "AES256",
    ):
        """
        Initialize S3 blob store.

        Args:
            s3_client: boto3 S3 client
            multipart_threshold: Size in bytes at which multipart upload is used
            part_size: Size in bytes of each multipart part but the last
            storage_class: S3 storage class for new objects
            server_side_encryption: SSE algorithm (AES256, aws:kms) or None
        """
        if multipart_threshold <= 0:
            raise ValueError("multipart_threshold must be positive")
        if part_size <= 0:
            raise ValueError("part_size must be positive")
        if part_size < MIN_MULTIPART_PART_SIZE:
            logger.warning(
                "multipart_part_size_below_s3_minimum",
                part_size=part_size,
                minimum=MIN_MULTIPART_PART_SIZE,
            )
        self.s3_client = s3_client
        self.multipart_threshold = multipart_threshold
        self.part_size = part_size
        self.storage_class = storage_class
        self.server_side_encryption = server_side_encryption

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3BlobStore":
        """Create the store with a boto3 client built from settings."""
        client_config: Dict[str, Any] = {"region_name": settings.aws_region}
        if settings.aws_access_key_id and settings.aws_secret_access_key:
            client_config["aws_access_key_id"] = settings.aws_access_key_id
            client_config["aws_secret_access_key"] = settings.aws_secret_access_key
            if settings.aws_session_token:
                client_config["aws_session_token"] = settings.aws_session_token

        try:
            s3_client = boto3.client("s3", **client_config)
        except (BotoCoreError, ClientError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}") from e

        return cls(
            s3_client,
            multipart_threshold=settings.multipart_threshold_bytes,
            part_size=settings.multipart_part_size_bytes,
            storage_class=settings.s3_storage_class,
            server_side_encryption=settings.s3_server_side_encryption,
        )

    async def _call(self, method: Callable[..., Any], **kwargs: Any) -> Any:
        """Run a blocking SDK call in the executor."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, functools.partial(method, **kwargs))

    def _object_params(
        self,
        bucket: str,
        key: str,
        content_type: str,
        tags: Optional[Dict[str, str]],
        metadata: Optional[Dict[str, str]],
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "Bucket": bucket,
            "Key": key,
            "ContentType": content_type,
        }
        if self.storage_class:
            params["StorageClass"] = self.storage_class
        if self.server_side_encryption:
            params["ServerSideEncryption"] = self.server_side_encryption
        if metadata:
            params["Metadata"] = {str(k): str(v) for k, v in metadata.items()}
        if tags:
            params["Tagging"] = urlencode(tags, quote_via=quote)
        return params

    async def exists(self, bucket: str, key: str) -> bool:
        """Check if an object exists in S3."""
        validate_location(bucket, key)
        try:
            await self._call(self.s3_client.head_object, Bucket=bucket, Key=key)
            return True
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise StorageError(f"Error checking object existence: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Error checking object existence: {e}") from e

    async def upload(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: Optional[str] = None,
        tags: Optional[Dict[str, str]] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> UploadResult:
        """Store bytes in S3, choosing single-part or multipart by size."""
        validate_location(bucket, key)
        content_type = content_type or DEFAULT_CONTENT_TYPE
        params = self._object_params(bucket, key, content_type, tags, metadata)
        started = time.monotonic()

        used_multipart = len(data) >= self.multipart_threshold
        if used_multipart:
            etag = await self._upload_multipart(params, data)
        else:
            etag = await self._upload_single(params, data)

        result = UploadResult(
            object_id=f"s3://{bucket}/{key}",
            key=key,
            size=len(data),
            content_type=content_type,
            etag=etag,
            duration=time.monotonic() - started,
            used_multipart=used_multipart,
        )
        logger.info(
            "object_uploaded",
            bucket=bucket,
            key=key,
            size=result.size,
            multipart=used_multipart,
            duration_ms=round(result.duration * 1000, 2),
        )
        return result

    async def _upload_single(
        self, params: Dict[str, Any], data: bytes
    ) -> Optional[str]:
        try:
            response = await self._call(self.s3_client.put_object, Body=data, **params)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to upload {params['Key']}: {e}") from e
        return response.get("ETag")

    async def _upload_multipart(
        self, params: Dict[str, Any], data: bytes
    ) -> Optional[str]:
        bucket, key = params["Bucket"], params["Key"]
        try:
            response = await self._call(
                self.s3_client.create_multipart_upload, **params
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to create multipart upload: {e}") from e
        upload_id = response["UploadId"]

        try:
            parts: List[Dict[str, Any]] = []
            for part_number, offset in enumerate(
                range(0, len(data), self.part_size), start=1
            ):
                part = await self._call(
                    self.s3_client.upload_part,
                    Bucket=bucket,
                    Key=key,
                    UploadId=upload_id,
                    PartNumber=part_number,
                    Body=data[offset : offset + self.part_size],
                )
                parts.append({"ETag": part["ETag"], "PartNumber": part_number})
                logger.debug(
                    "multipart_part_uploaded",
                    key=key,
                    part_number=part_number,
                )

            completed = await self._call(
                self.s3_client.complete_multipart_upload,
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except (BotoCoreError, ClientError) as e:
            await self._abort_multipart(bucket, key, upload_id)
            raise StorageError(f"Multipart upload of {key} failed: {e}") from e
        except BaseException:
            # Cancellation and unexpected errors still must not leak the upload
            await self._abort_multipart(bucket, key, upload_id)
            raise

        return completed.get("ETag")

    async def _abort_multipart(self, bucket: str, key: str, upload_id: str) -> None:
        """Abort a multipart upload; failure to abort is logged only."""
        try:
            await self._call(
                self.s3_client.abort_multipart_upload,
                Bucket=bucket,
                Key=key,
                UploadId=upload_id,
            )
            logger.warning("multipart_upload_aborted", key=key, upload_id=upload_id)
        except (BotoCoreError, ClientError) as e:
            logger.error(
                "multipart_upload_abort_failed",
                key=key,
                upload_id=upload_id,
                error=str(e),
            )

    async def metadata(self, bucket: str, key: str) -> Optional[ObjectInfo]:
        """Get metadata for an object without downloading it."""
        validate_location(bucket, key)
        try:
            response = await self._call(
                self.s3_client.head_object, Bucket=bucket, Key=key
            )
        except ClientError as e:
            if _is_not_found(e):
                return None
            raise StorageError(f"Failed to get metadata for {key}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Failed to get metadata for {key}: {e}") from e

        return ObjectInfo(
            key=key,
            size=response.get("ContentLength", 0),
            last_modified=response.get("LastModified"),
            etag=response.get("ETag"),
            content_type=response.get("ContentType"),
            metadata=dict(response.get("Metadata", {})),
        )

    async def delete(self, bucket: str, key: str) -> bool:
        """Delete an object from S3."""
        validate_location(bucket, key)
        try:
            await self._call(self.s3_client.delete_object, Bucket=bucket, Key=key)
            logger.info("object_deleted", bucket=bucket, key=key)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.error("object_delete_failed", bucket=bucket, key=key, error=str(e))
            return False
