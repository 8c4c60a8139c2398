"""Storage backend protocol and data types.

This module defines the capability interface every S3-compatible backend
adapter provides to :class:`~obsput.services.storage_service.StorageClient`,
so the client logic can run against Huawei OBS, MinIO or an in-memory fake.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, Protocol, Sequence


@dataclass(frozen=True, slots=True)
class ObjectEntry:
    """One object returned by a listing request."""

    key: str
    size_bytes: int
    last_modified: datetime


@dataclass(frozen=True, slots=True)
class ListPage:
    """A single page of a marker-paginated listing."""

    items: Sequence[ObjectEntry] = field(default_factory=tuple)
    is_truncated: bool = False
    next_marker: str = ""


class ObjectStorageBackend(Protocol):
    """Protocol defining the operations the storage client needs from a backend.

    Implementations raise :class:`~obsput.domain.errors.ObsputError`
    subclasses on failure and never swallow errors themselves.
    """

    def put_object(
        self,
        *,
        bucket: str,
        key: str,
        body: bytes | BinaryIO,
        content_md5: str,
        content_length: int,
    ) -> int:
        """Upload an object in a single request.

        Args:
            bucket: Target bucket name.
            key: Object key in the bucket.
            body: Object content, as bytes or a readable binary stream.
            content_md5: Base64 encoded MD5 digest for server-side verification.
            content_length: Size of the body in bytes.

        Returns:
            The HTTP status code of the response.

        Raises:
            IntegrityError: If the backend rejects the digest.
            BackendError: If the request fails.
        """
        ...

    def list_objects(self, *, bucket: str, prefix: str, marker: str = "") -> ListPage:
        """Fetch one page of objects whose key starts with ``prefix``.

        Args:
            bucket: Bucket to list.
            prefix: Key prefix filter, may be empty.
            marker: Continuation marker from the previous page, empty for the first.

        Raises:
            BackendError: If the request fails.
        """
        ...

    def delete_object(self, *, bucket: str, key: str) -> int:
        """Delete one object and return the HTTP status code."""
        ...

    def head_bucket(self, *, bucket: str) -> bool:
        """Return True if the bucket exists and False on a 404.

        Raises:
            BackendError: For any failure other than "not found".
        """
        ...

    def create_bucket(self, *, bucket: str) -> int:
        """Create a bucket and return the HTTP status code."""
        ...

    def set_bucket_policy(self, *, bucket: str, policy: str) -> int:
        """Replace the bucket policy with the given JSON document."""
        ...

    def set_object_acl(self, *, bucket: str, key: str, acl: str) -> int:
        """Apply a canned ACL (e.g. ``public-read-write``) to one object."""
        ...

    def sign_url(
        self,
        *,
        bucket: str,
        key: str,
        method: str = "GET",
        expires_in: int,
    ) -> str:
        """Generate a presigned URL.

        Args:
            bucket: Bucket name.
            key: Object key.
            method: HTTP method the URL authorizes (``GET``, ``PUT``, ``DELETE``).
            expires_in: URL validity in seconds.

        Raises:
            BackendError: If URL generation fails or yields an empty URL.
        """
        ...
