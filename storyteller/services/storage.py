"""S3 object storage for published narrations."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator
from urllib.parse import quote, unquote, urlparse

from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import iterate_in_threadpool, run_in_threadpool

from storyteller.config.settings import S3Config
from storyteller.errors import ConfigurationError, StorytellerError
from storyteller.services.aws import create_boto3_client

logger = logging.getLogger(__name__)

STREAM_CHUNK_SIZE = 64 * 1024
_ACL_DISABLED_CODES = {"AccessControlListNotSupported"}
_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class StorageError(StorytellerError):
    """Raised when S3 asset persistence fails."""


class ObjectNotFoundError(StorageError, LookupError):
    """Raised when a requested object does not exist."""


@dataclass
class ObjectStream:
    """Body of a stored object, consumed chunk by chunk."""

    object_id: str
    content_type: str
    content_length: int | None
    chunks: AsyncIterator[bytes]


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


class S3ObjectStorage:
    """Folder, upload, ACL and streaming operations against one bucket.

    Folders are key prefixes made visible by an empty ``<name>/`` marker
    object; object ids are the full keys.
    """

    def __init__(self, config: S3Config, client: Any | None = None) -> None:
        if not config.bucket_name:
            raise ConfigurationError("S3 bucket name is not configured.")
        self._config = config
        self._bucket = config.bucket_name
        self._client = client or create_boto3_client(
            "s3",
            region_name=config.region,
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
            endpoint_url=config.endpoint_url,
        )
        self._folders: dict[str, str] = {}

    @property
    def bucket(self) -> str:
        return self._bucket

    async def resolve_or_create_folder(self, name: str) -> str:
        """Return the prefix for ``name``, creating its marker object if missing."""

        folder_name = name.strip("/")
        cached = self._folders.get(folder_name)
        if cached is not None:
            return cached

        prefix = f"{folder_name}/"
        try:
            listing = await run_in_threadpool(
                self._client.list_objects_v2,
                Bucket=self._bucket,
                Prefix=prefix,
                MaxKeys=1,
            )
            if not listing.get("KeyCount"):
                await run_in_threadpool(
                    self._client.put_object,
                    Bucket=self._bucket,
                    Key=prefix,
                    Body=b"",
                )
                logger.info("Created storage folder %s in bucket %s", prefix, self._bucket)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to resolve folder '{folder_name}': {exc}") from exc

        self._folders[folder_name] = prefix
        return prefix

    async def upload(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        parent_folder_id: str | None = None,
    ) -> str:
        """Upload ``data`` and return the new object id."""

        if not data:
            raise StorageError("Audio payload for upload was empty.")
        object_id = f"{parent_folder_id or ''}{filename}"
        try:
            await run_in_threadpool(
                self._client.put_object,
                Bucket=self._bucket,
                Key=object_id,
                Body=data,
                ContentType=mime_type,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to upload {filename}: {exc}") from exc
        logger.info("Uploaded %s (%d bytes)", object_id, len(data))
        return object_id

    async def grant_public_read(self, object_id: str) -> None:
        """Make ``object_id`` publicly readable. Safe to call repeatedly."""

        try:
            await run_in_threadpool(
                self._client.put_object_acl,
                Bucket=self._bucket,
                Key=object_id,
                ACL="public-read",
            )
        except ClientError as exc:
            if _error_code(exc) in _ACL_DISABLED_CODES:
                # Bucket policy governs access; objects are already public.
                return
            raise StorageError(f"Failed to publish {object_id}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to publish {object_id}: {exc}") from exc

    async def stream_content(self, object_id: str) -> ObjectStream:
        try:
            response = await run_in_threadpool(
                self._client.get_object,
                Bucket=self._bucket,
                Key=object_id,
            )
        except ClientError as exc:
            if _error_code(exc) in _MISSING_CODES:
                raise ObjectNotFoundError(f"Object not found: {object_id}") from exc
            raise StorageError(f"Failed to read {object_id}: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Failed to read {object_id}: {exc}") from exc

        body = response["Body"]
        return ObjectStream(
            object_id=object_id,
            content_type=response.get("ContentType") or "application/octet-stream",
            content_length=response.get("ContentLength"),
            chunks=iterate_in_threadpool(body.iter_chunks(chunk_size=STREAM_CHUNK_SIZE)),
        )

    def public_url(self, object_id: str) -> str:
        key = quote(object_id, safe="/")
        if self._config.endpoint_url:
            return f"{self._config.endpoint_url.rstrip('/')}/{self._bucket}/{key}"
        region = self._config.region
        if region == "us-east-1":
            return f"https://{self._bucket}.s3.amazonaws.com/{key}"
        return f"https://{self._bucket}.s3.{region}.amazonaws.com/{key}"

    def object_id_from_url(self, url: str) -> str | None:
        """Recover the object id from a URL built by :meth:`public_url`."""

        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            return None
        path = unquote(parsed.path).lstrip("/")

        if self._config.endpoint_url:
            endpoint = urlparse(self._config.endpoint_url)
            if parsed.netloc != endpoint.netloc:
                return None
            base = endpoint.path.strip("/")
            if base:
                if not path.startswith(f"{base}/"):
                    return None
                path = path[len(base) + 1 :]
            bucket_prefix = f"{self._bucket}/"
            if not path.startswith(bucket_prefix):
                return None
            return path[len(bucket_prefix) :] or None

        if parsed.netloc.startswith(f"{self._bucket}.s3.") and parsed.netloc.endswith(
            ".amazonaws.com"
        ):
            return path or None
        return None


__all__ = [
    "ObjectNotFoundError",
    "ObjectStream",
    "S3ObjectStorage",
    "StorageError",
]
