"""Object-storage style blob access.

Keys are plain slash-separated strings (``Cards/Jane Doe.md``,
``data/contacts.json``). The protocol mirrors the small surface the sync
engine needs from an S3-like service. ``S3BlobStore`` talks to a bucket;
``LocalBlobStore`` keeps the same contract on the local filesystem.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, List, Optional, Protocol

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


class BlobNotFoundError(Exception):
    """Raised when a blob cannot be found in storage."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Blob not found: {key}")


class BlobStore(Protocol):
    """Protocol for blob storage backends."""

    async def put(self, key: str, data: bytes, *, content_type: str) -> str:
        """Store ``data`` under ``key`` and return the key."""
        ...

    async def get(self, key: str) -> bytes:
        """Return the blob bytes.

        Raises:
            BlobNotFoundError: If blob does not exist
        """
        ...

    async def list(self, prefix: str = "") -> List[str]:
        """Return every key starting with ``prefix``."""
        ...

    async def delete(self, key: str) -> None:
        """Delete a blob.

        Raises:
            BlobNotFoundError: If blob does not exist
        """
        ...

    async def exists(self, key: str) -> bool:
        ...


class LocalBlobStore:
    """Filesystem-backed blob store.

    Args:
        base_dir: Root directory; a key maps to ``base_dir / key``.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir).resolve()

    def _key_to_path(self, key: str) -> Path:
        if not key or key.endswith("/"):
            raise ValueError(f"Invalid blob key: {key!r}")
        resolved_path = (self.base_dir / key).resolve()
        try:
            resolved_path.relative_to(self.base_dir)
        except ValueError as e:
            raise ValueError(f"Path traversal attempt detected: {key}") from e
        return resolved_path

    async def put(self, key: str, data: bytes, *, content_type: str) -> str:
        file_path = self._key_to_path(key)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(data)
        return key

    async def get(self, key: str) -> bytes:
        file_path = self._key_to_path(key)
        if not file_path.is_file():
            raise BlobNotFoundError(key)
        return file_path.read_bytes()

    async def list(self, prefix: str = "") -> List[str]:
        if not self.base_dir.exists():
            return []
        keys = []
        for path in self.base_dir.rglob("*"):
            if not path.is_file():
                continue
            key = path.relative_to(self.base_dir).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    async def delete(self, key: str) -> None:
        file_path = self._key_to_path(key)
        if not file_path.is_file():
            raise BlobNotFoundError(key)
        file_path.unlink()

    async def exists(self, key: str) -> bool:
        try:
            return self._key_to_path(key).is_file()
        except ValueError:
            return False


def _is_missing(exc: ClientError) -> bool:
    return str(exc.response.get("Error", {}).get("Code", "")) in MISSING_KEY_CODES


class S3BlobStore:
    """Blob store on an S3-compatible bucket (AWS S3, Cloudflare R2, MinIO).

    boto3 is synchronous; every call runs in a worker thread.

    Args:
        bucket: Bucket name.
        client: A ready boto3 S3 client; built from the keyword arguments if omitted.
        endpoint_url: Custom endpoint, e.g. ``https://<account>.r2.cloudflarestorage.com``.
        page_size: Keys requested per ``ListObjectsV2`` page.
    """

    def __init__(
        self,
        bucket: str,
        client: Any = None,
        *,
        endpoint_url: Optional[str] = None,
        region_name: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        page_size: int = 1000,
    ):
        if not bucket:
            raise ValueError("S3 blob store needs a bucket name")
        self.bucket = bucket
        self.page_size = page_size
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url or None,
            region_name=region_name or None,
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
        )

    def _put(self, key: str, data: bytes, content_type: str) -> str:
        self.client.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        return key

    def _get(self, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _is_missing(exc):
                raise BlobNotFoundError(key) from exc
            raise
        return response["Body"].read()

    def _list(self, prefix: str) -> List[str]:
        keys = []
        paginator = self.client.get_paginator("list_objects_v2")
        pages = paginator.paginate(
            Bucket=self.bucket,
            Prefix=prefix,
            PaginationConfig={"PageSize": self.page_size},
        )
        for page in pages:
            keys.extend(item["Key"] for item in page.get("Contents", []))
        return sorted(keys)

    def _exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _is_missing(exc):
                return False
            raise
        return True

    def _delete(self, key: str) -> None:
        # DeleteObject succeeds on missing keys, so check first.
        if not self._exists(key):
            raise BlobNotFoundError(key)
        self.client.delete_object(Bucket=self.bucket, Key=key)

    async def put(self, key: str, data: bytes, *, content_type: str) -> str:
        return await asyncio.to_thread(self._put, key, data, content_type)

    async def get(self, key: str) -> bytes:
        return await asyncio.to_thread(self._get, key)

    async def list(self, prefix: str = "") -> List[str]:
        return await asyncio.to_thread(self._list, prefix)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)
        logger.debug("Deleted s3://%s/%s", self.bucket, key)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self._exists, key)


__all__ = ["BlobNotFoundError", "BlobStore", "LocalBlobStore", "S3BlobStore"]
