"""
Local filesystem payload storage (file:// URIs).

Links are signed with HMAC-SHA256 over method, key and expiry, and are served
by the internal storage endpoints of the API.

Structure:
    /var/lib/fleet-deployments/artifacts/
    ├── {artifact_id}          # Raw payload
    └── .{artifact_id}.part    # Upload in progress, never visible under the key
"""
from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import os
import re
import shutil
import time
from datetime import timedelta
from pathlib import Path
from typing import BinaryIO, Optional

import structlog

from ..schemas.artifact import SignedLink
from .base import FileStorage, LimitedReader, UploadAbortedError

logger = structlog.get_logger()

STORAGE_ROUTE = "/api/internal/v1/storage"

_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,254}$")


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


class LocalFileStorage(FileStorage):
    """Payload store backed by a local directory."""

    def __init__(self, base_path: Path, public_url: str = "", secret_key: str = ""):
        """Initialize with the directory holding the payloads.

        Args:
            base_path: Absolute path of the payload directory
            public_url: Base URL the signed links point at
            secret_key: HMAC key used to sign and verify links
        """
        if not secret_key:
            raise ValueError("secret_key is required to sign storage links")
        self.base_path = base_path
        self.public_url = public_url.rstrip("/")
        self._secret = secret_key.encode("utf-8")
        self.base_path.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        """Resolve `key` to its file, rejecting anything that is not a plain name."""
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.base_path / key

    async def upload_artifact(
        self, key: str, size: int, reader: BinaryIO, content_type: str
    ) -> None:
        limited = LimitedReader(reader, size)
        await self._upload_in_thread(key, limited, self._write, key, limited)

    def _write(self, key: str, reader: LimitedReader) -> None:
        target = self.path_for(key)
        partial = self.base_path / f".{key}.part"
        try:
            with open(partial, "wb") as f:
                shutil.copyfileobj(reader, f)
            if reader.aborted:
                raise UploadAbortedError("upload aborted")
            os.replace(partial, target)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

    async def get_request(self, key: str, expire: timedelta) -> SignedLink:
        return self._sign_link(key, "GET", expire)

    async def delete_request(self, key: str, expire: timedelta) -> SignedLink:
        return self._sign_link(key, "DELETE", expire)

    async def delete(self, key: str) -> None:
        path = self.path_for(key)
        await asyncio.to_thread(path.unlink, missing_ok=True)
        logger.debug("storage_object_deleted", key=key)

    def _signature(self, key: str, method: str, expires: int) -> str:
        payload = f"{method}\n{key}\n{expires}".encode("utf-8")
        return _b64(hmac.new(self._secret, payload, hashlib.sha256).digest())

    def _sign_link(self, key: str, method: str, expire: timedelta) -> SignedLink:
        self.path_for(key)
        expires = int(time.time() + expire.total_seconds())
        signature = self._signature(key, method, expires)
        uri = (
            f"{self.public_url}{STORAGE_ROUTE}/{key}"
            f"?expires={expires}&signature={signature}"
        )
        return SignedLink(uri=uri, expire=expire, method=method)

    def verify(
        self,
        key: str,
        method: str,
        expires: int,
        signature: str,
        now: Optional[float] = None,
    ) -> bool:
        """Check a link signature issued by this store and its expiry."""
        if (now if now is not None else time.time()) > expires:
            return False
        expected = self._signature(key, method.upper(), expires)
        return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
