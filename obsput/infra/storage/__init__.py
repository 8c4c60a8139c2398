"""Object storage backends.

This package defines the backend protocol used by the storage client and the
boto3 adapter for S3-compatible services (Huawei OBS, MinIO, AWS S3).
"""

from .client import (
    ListPage,
    ObjectEntry,
    ObjectStorageBackend,
)

__all__ = [
    "ListPage",
    "ObjectEntry",
    "ObjectStorageBackend",
]
