"""Blob store for attachment files.

Files never pass through the API server: clients upload chunks and delete
objects with presigned URLs, the server only coordinates multipart uploads and
checks results.
"""

import asyncio
from collections.abc import Callable
from typing import Any, Protocol

import boto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from casebook.config import Config
from casebook.core.modules.attachment.models import UploadPart
from casebook.core.modules.attachment.utils import content_disposition
from casebook.errors import StorageFaultError

logger = structlog.get_logger(__name__)

MISSING_OBJECT_CODES = {"404", "NoSuchKey", "NotFound"}
MISSING_UPLOAD_CODES = {"404", "NoSuchUpload"}


class BlobStore(Protocol):
    """Object storage operations used by uploads, downloads and deletions."""

    async def create_multipart_upload(self, key: str, content_type: str) -> str:
        """Start a multipart upload and return its upload id."""
        ...

    async def generate_presigned_upload_urls(self, key: str, upload_id: str, part_count: int, expires_in: int) -> list[str]:
        """One presigned PUT URL per part, in part order."""
        ...

    async def complete_multipart_upload(self, key: str, upload_id: str, parts: list[UploadPart]) -> None:
        """Assemble uploaded parts into the final object."""
        ...

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        """Discard all uploaded parts. Succeeds if the upload is already gone."""
        ...

    async def generate_presigned_delete(self, key: str, expires_in: int) -> str:
        """Presigned DELETE URL for the object."""
        ...

    async def generate_presigned_download(self, key: str, filename: str, expires_in: int) -> str:
        """Presigned GET URL that downloads the object under its original name."""
        ...

    async def delete_object(self, key: str) -> None:
        """Delete the object. Succeeds if the object is already gone."""
        ...

    async def object_exists(self, key: str) -> bool:
        """Whether the object is present."""
        ...


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


class S3BlobStore:
    """BlobStore backed by S3 or an S3-compatible service such as MinIO.

    boto3 is synchronous, every call runs in a worker thread.
    """

    def __init__(self, client: Any, bucket: str) -> None:
        self._client = client
        self._bucket = bucket

    @classmethod
    def from_config(cls, config: Config) -> "S3BlobStore":
        client = boto3.client(
            "s3",
            region_name=config.s3_region,
            endpoint_url=config.s3_endpoint_url,
            aws_access_key_id=config.aws_access_key_id,
            aws_secret_access_key=config.aws_secret_access_key,
            config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path" if config.s3_endpoint_url else "auto"}),
        )
        return cls(client, config.s3_bucket)

    async def _call(self, operation: str, func: Callable[..., Any], **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, **kwargs)
        except (ClientError, BotoCoreError) as e:
            logger.error("blob_store_error", operation=operation, key=kwargs.get("Key"), error=str(e))
            raise StorageFaultError(f"Blob store operation '{operation}' failed: {e}") from e

    async def create_multipart_upload(self, key: str, content_type: str) -> str:
        response = await self._call(
            "create_multipart_upload",
            self._client.create_multipart_upload,
            Bucket=self._bucket,
            Key=key,
            ContentType=content_type,
        )
        return str(response["UploadId"])

    async def generate_presigned_upload_urls(self, key: str, upload_id: str, part_count: int, expires_in: int) -> list[str]:
        return [
            await self._call(
                "generate_presigned_url",
                self._client.generate_presigned_url,
                ClientMethod="upload_part",
                Params={"Bucket": self._bucket, "Key": key, "UploadId": upload_id, "PartNumber": part_number},
                ExpiresIn=expires_in,
            )
            for part_number in range(1, part_count + 1)
        ]

    async def complete_multipart_upload(self, key: str, upload_id: str, parts: list[UploadPart]) -> None:
        await self._call(
            "complete_multipart_upload",
            self._client.complete_multipart_upload,
            Bucket=self._bucket,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={"Parts": [{"PartNumber": part.part_number, "ETag": part.etag} for part in parts]},
        )

    async def abort_multipart_upload(self, key: str, upload_id: str) -> None:
        try:
            await asyncio.to_thread(self._client.abort_multipart_upload, Bucket=self._bucket, Key=key, UploadId=upload_id)
        except ClientError as e:
            if _error_code(e) in MISSING_UPLOAD_CODES:
                logger.debug("multipart_upload_already_gone", key=key, upload_id=upload_id)
                return
            logger.error("blob_store_error", operation="abort_multipart_upload", key=key, error=str(e))
            raise StorageFaultError(f"Blob store operation 'abort_multipart_upload' failed: {e}") from e
        except BotoCoreError as e:
            logger.error("blob_store_error", operation="abort_multipart_upload", key=key, error=str(e))
            raise StorageFaultError(f"Blob store operation 'abort_multipart_upload' failed: {e}") from e

    async def generate_presigned_delete(self, key: str, expires_in: int) -> str:
        return str(
            await self._call(
                "generate_presigned_url",
                self._client.generate_presigned_url,
                ClientMethod="delete_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        )

    async def generate_presigned_download(self, key: str, filename: str, expires_in: int) -> str:
        return str(
            await self._call(
                "generate_presigned_url",
                self._client.generate_presigned_url,
                ClientMethod="get_object",
                Params={
                    "Bucket": self._bucket,
                    "Key": key,
                    "ResponseContentDisposition": content_disposition(filename),
                },
                ExpiresIn=expires_in,
            )
        )

    async def delete_object(self, key: str) -> None:
        # S3 answers 204 for keys that don't exist, so this is idempotent
        await self._call("delete_object", self._client.delete_object, Bucket=self._bucket, Key=key)

    async def object_exists(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self._bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in MISSING_OBJECT_CODES:
                return False
            logger.error("blob_store_error", operation="head_object", key=key, error=str(e))
            raise StorageFaultError(f"Blob store operation 'head_object' failed: {e}") from e
        except BotoCoreError as e:
            logger.error("blob_store_error", operation="head_object", key=key, error=str(e))
            raise StorageFaultError(f"Blob store operation 'head_object' failed: {e}") from e
        return True
