"""
Object storage abstraction for raw artifact payloads.

file:// keeps payloads in a local directory and signs links itself.
s3:// keeps payloads in a bucket and relies on S3 presigned URLs.

Design principle: treat storage as a URI, not a boolean.
"""
from __future__ import annotations

import asyncio
import threading
from abc import ABC, abstractmethod
from datetime import timedelta
from pathlib import Path
from typing import Any, BinaryIO, Callable, Optional
from urllib.parse import urlparse

import structlog

from ..schemas.artifact import SignedLink

logger = structlog.get_logger()


class UploadAbortedError(Exception):
    """The upload was abandoned by its caller before it finished."""


class FileStorage(ABC):
    """Abstract base class for raw payload storage.

    Only ``delete`` is idempotent: deleting a key that does not exist
    (anymore) succeeds.

    An ``upload_artifact`` that fails or is cancelled leaves nothing under
    its key.
    """

    @abstractmethod
    async def upload_artifact(
        self, key: str, size: int, reader: BinaryIO, content_type: str
    ) -> None:
        """Store the bytes offered by `reader` under `key`."""
        pass

    @abstractmethod
    async def get_request(self, key: str, expire: timedelta) -> SignedLink:
        """Issue a signed GET link for `key`."""
        pass

    @abstractmethod
    async def delete_request(self, key: str, expire: timedelta) -> SignedLink:
        """Issue a signed DELETE link for `key`."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the object stored under `key`."""
        pass

    async def _upload_in_thread(
        self,
        key: str,
        reader: LimitedReader,
        upload: Callable[..., Any],
        *args: Any,
        **kwargs: Any,
    ) -> None:
        """Run a blocking upload in a worker thread.

        A thread cannot be cancelled, so on cancellation the reader is aborted,
        the worker is awaited and whatever it may have published under `key`
        is deleted before the cancellation propagates.
        """
        worker = asyncio.ensure_future(asyncio.to_thread(upload, *args, **kwargs))
        try:
            await asyncio.shield(worker)
        except asyncio.CancelledError:
            reader.abort()
            await asyncio.gather(worker, return_exceptions=True)
            try:
                await self.delete(key)
            except Exception as e:
                logger.error("abandoned_upload_not_removed", key=key, error=str(e))
            else:
                logger.info("abandoned_upload_removed", key=key)
            raise


class LimitedReader:
    """File-like wrapper returning EOF after `limit` bytes.

    Storage backends read the untrusted payload through this wrapper, so a
    stream offering more than the declared size is cut at the declared size.
    """

    def __init__(self, stream: BinaryIO, limit: int):
        self.stream = stream
        self.remaining = limit
        self._aborted = threading.Event()

    def abort(self) -> None:
        """Make every further read raise UploadAbortedError."""
        self._aborted.set()

    @property
    def aborted(self) -> bool:
        return self._aborted.is_set()

    def read(self, size: Optional[int] = -1) -> bytes:
        if self.aborted:
            raise UploadAbortedError("upload aborted")
        if self.remaining <= 0:
            return b""
        if size is None or size < 0 or size > self.remaining:
            size = self.remaining
        data = self.stream.read(size)
        self.remaining -= len(data)
        return data

    def readable(self) -> bool:
        return True


def create_file_storage(
    uri: str,
    public_url: str = "",
    secret_key: str = "",
    region: Optional[str] = None,
    endpoint_url: Optional[str] = None,
) -> FileStorage:
    """Factory function to create the appropriate FileStorage from a URI.

    Args:
        uri: Storage URI (e.g., "file:///var/lib/artifacts" or "s3://bucket/prefix")
        public_url: Base URL for links signed by file:// storage
        secret_key: HMAC key for links signed by file:// storage
        region: AWS region for s3:// storage
        endpoint_url: Custom S3 endpoint (MinIO, R2, ...)

    Returns:
        FileStorage instance for the given URI scheme

    Raises:
        ValueError: If URI scheme is not supported
    """
    parsed = urlparse(uri)

    if parsed.scheme == "file":
        from .local import LocalFileStorage

        return LocalFileStorage(
            Path(parsed.path), public_url=public_url, secret_key=secret_key
        )

    elif parsed.scheme == "s3":
        from .s3 import S3FileStorage

        return S3FileStorage(
            bucket=parsed.netloc,
            prefix=parsed.path.strip("/"),
            region=region,
            endpoint_url=endpoint_url,
        )

    else:
        raise ValueError(
            f"Unsupported storage scheme: {parsed.scheme}. "
            f"Supported: file://, s3://"
        )
