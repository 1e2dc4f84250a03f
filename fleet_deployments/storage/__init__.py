"""
Raw payload storage.

Components:
    - base: FileStorage interface, LimitedReader and the URI factory
    - local: file:// storage with HMAC-signed links
    - s3: s3:// storage with presigned URLs
"""

from .base import FileStorage, LimitedReader, UploadAbortedError, create_file_storage
from .local import LocalFileStorage
from .s3 import S3FileStorage

__all__ = [
    "FileStorage",
    "LimitedReader",
    "LocalFileStorage",
    "S3FileStorage",
    "UploadAbortedError",
    "create_file_storage",
]
