"""
S3 payload storage (s3:// URIs).

boto3 is synchronous; every call runs in a worker thread so the saga's event
loop stays free and cancellation is observed at the await.
"""
from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, BinaryIO, Optional

import boto3
import structlog
from botocore.client import Config
from botocore.exceptions import ClientError

from ..schemas.artifact import SignedLink
from .base import FileStorage, LimitedReader

logger = structlog.get_logger()

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class S3FileStorage(FileStorage):
    """Payload store backed by an S3-compatible bucket."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        client: Optional[Any] = None,
    ):
        if not bucket:
            raise ValueError("S3 storage URI must name a bucket")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            config=Config(signature_version="s3v4"),
        )

    def object_key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    async def upload_artifact(
        self, key: str, size: int, reader: BinaryIO, content_type: str
    ) -> None:
        limited = LimitedReader(reader, size)
        await self._upload_in_thread(
            key,
            limited,
            self.client.upload_fileobj,
            limited,
            self.bucket,
            self.object_key(key),
            ExtraArgs={"ContentType": content_type},
        )

    async def get_request(self, key: str, expire: timedelta) -> SignedLink:
        uri = await asyncio.to_thread(
            self.client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": self.object_key(key)},
            ExpiresIn=int(expire.total_seconds()),
        )
        return SignedLink(uri=uri, expire=expire, method="GET")

    async def delete_request(self, key: str, expire: timedelta) -> SignedLink:
        uri = await asyncio.to_thread(
            self.client.generate_presigned_url,
            "delete_object",
            Params={"Bucket": self.bucket, "Key": self.object_key(key)},
            ExpiresIn=int(expire.total_seconds()),
            HttpMethod="DELETE",
        )
        return SignedLink(uri=uri, expire=expire, method="DELETE")

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(
                self.client.delete_object,
                Bucket=self.bucket,
                Key=self.object_key(key),
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code not in _MISSING_CODES:
                raise
            logger.debug("storage_object_already_gone", key=key, code=code)
