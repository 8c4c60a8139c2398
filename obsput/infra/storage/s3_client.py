"""S3-compatible storage backend implementation.

This module provides the boto3 adapter used for Huawei Cloud OBS, MinIO and
AWS S3. OBS exposes an S3-compatible API, so a single adapter covers all of
them given the right endpoint.

Dependencies:
    - boto3
    - botocore
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, BinaryIO

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, EndpointConnectionError

from obsput.domain.errors import (
    BackendError,
    ConnectivityError,
    IntegrityError,
    NotFoundError,
    ObsputError,
)
from obsput.domain.keys import HostClass, classify_host
from obsput.infra.storage.client import ListPage, ObjectEntry

if TYPE_CHECKING:
    from obsput.common.config import Settings

_NOT_FOUND_CODES = frozenset({"404", "NoSuchBucket", "NotFound", "NoSuchKey"})
_DIGEST_CODES = frozenset({"BadDigest", "InvalidDigest"})

_PRESIGN_OPERATIONS = {
    "GET": "get_object",
    "PUT": "put_object",
    "DELETE": "delete_object",
    "HEAD": "head_object",
}


def endpoint_url(endpoint: str) -> str:
    """Give a scheme to bare endpoints: http for local hosts, https otherwise."""
    endpoint = endpoint.strip().rstrip("/")
    if endpoint.startswith(("http://", "https://")):
        return endpoint
    if classify_host(endpoint) is HostClass.LOCAL:
        return f"http://{endpoint}"
    return f"https://{endpoint}"


def _status_of(response: dict[str, Any]) -> int:
    metadata = response.get("ResponseMetadata") or {}
    return int(metadata.get("HTTPStatusCode") or 200)


def _translate_error(exc: Exception, action: str) -> ObsputError:
    """Map botocore exceptions onto the obsput error taxonomy."""
    if isinstance(exc, EndpointConnectionError):
        return ConnectivityError(f"Failed to {action}: {exc}")
    if isinstance(exc, ClientError):
        error = exc.response.get("Error") or {}
        code = str(error.get("Code") or "")
        message = error.get("Message") or str(exc)
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in _DIGEST_CODES:
            return IntegrityError(
                f"Failed to {action}: checksum rejected ({code}): {message}",
                status_code=status,
            )
        if code in _NOT_FOUND_CODES or status == 404:
            return NotFoundError(f"Failed to {action}: {message}")
        return BackendError(
            f"Failed to {action}: {code or status}: {message}", status_code=status
        )
    return BackendError(f"Failed to {action}: {exc}")


class S3StorageBackend:
    """S3-compatible object storage backend.

    Supports Huawei OBS, MinIO, AWS S3 and other S3-compatible services.
    Uses boto3 for all storage operations.
    """

    def __init__(
        self,
        *,
        endpoint: str,
        access_key: str,
        secret_key: str,
        settings: "Settings",
    ) -> None:
        """Create the underlying boto3 client.

        Args:
            endpoint: Endpoint host or URL, e.g. ``obs.cn-north-4.myhuaweicloud.com``
                or ``http://127.0.0.1:9000``.
            access_key: Access key id.
            secret_key: Secret access key.
            settings: Application settings providing region and addressing style.

        Raises:
            BackendError: If the client cannot be constructed.
        """
        self.endpoint = endpoint
        try:
            self._client = self._build_client(endpoint, access_key, secret_key, settings)
        except (BotoCoreError, ValueError) as exc:
            raise BackendError(f"Failed to create storage client: {exc}") from exc

    @staticmethod
    def _build_client(
        endpoint: str, access_key: str, secret_key: str, settings: "Settings"
    ) -> Any:
        """Create a boto3 S3 client for the endpoint."""
        url = endpoint_url(endpoint)
        config = Config(
            s3={"addressing_style": settings.S3_ADDRESSING_STYLE},
            signature_version="s3v4",
            retries={"total_max_attempts": 1},
            # OBS and older MinIO releases reject the default CRC32 trailers.
            request_checksum_calculation="when_required",
            response_checksum_validation="when_required",
        )
        return boto3.client(
            "s3",
            endpoint_url=url,
            region_name=settings.S3_REGION,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            use_ssl=url.startswith("https://"),
            config=config,
        )

    def put_object(
        self,
        *,
        bucket: str,
        key: str,
        body: bytes | BinaryIO,
        content_md5: str,
        content_length: int,
    ) -> int:
        """Upload an object in a single request."""
        try:
            response = self._client.put_object(
                Bucket=bucket,
                Key=key,
                Body=body,
                ContentMD5=content_md5,
                ContentLength=int(content_length),
            )
        except (ClientError, BotoCoreError) as exc:
            raise _translate_error(exc, "upload object") from exc
        return _status_of(response)

    def list_objects(self, *, bucket: str, prefix: str, marker: str = "") -> ListPage:
        """Fetch one page of objects under ``prefix``."""
        params: dict[str, Any] = {"Bucket": bucket}
        if prefix:
            params["Prefix"] = prefix
        if marker:
            params["Marker"] = marker

        try:
            response = self._client.list_objects(**params)
        except (ClientError, BotoCoreError) as exc:
            raise _translate_error(exc, "list objects") from exc

        items = [
            ObjectEntry(
                key=str(obj["Key"]),
                size_bytes=int(obj.get("Size") or 0),
                last_modified=obj["LastModified"],
            )
            for obj in response.get("Contents") or []
        ]
        is_truncated = bool(response.get("IsTruncated"))
        # S3 only returns NextMarker for delimited listings; fall back to the last key.
        next_marker = response.get("NextMarker") or (items[-1].key if items else "")
        return ListPage(
            items=items,
            is_truncated=is_truncated,
            next_marker=str(next_marker) if is_truncated else "",
        )

    def delete_object(self, *, bucket: str, key: str) -> int:
        """Delete an object from storage."""
        try:
            response = self._client.delete_object(Bucket=bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise _translate_error(exc, f"delete {key}") from exc
        return _status_of(response)

    def head_bucket(self, *, bucket: str) -> bool:
        """Check whether the bucket exists."""
        try:
            self._client.head_bucket(Bucket=bucket)
        except (ClientError, BotoCoreError) as exc:
            error = _translate_error(exc, "check bucket")
            if isinstance(error, NotFoundError):
                return False
            raise error from exc
        return True

    def create_bucket(self, *, bucket: str) -> int:
        """Create a bucket."""
        try:
            response = self._client.create_bucket(Bucket=bucket)
        except (ClientError, BotoCoreError) as exc:
            raise _translate_error(exc, f"create bucket {bucket}") from exc
        return _status_of(response)

    def set_bucket_policy(self, *, bucket: str, policy: str) -> int:
        """Replace the bucket policy."""
        try:
            response = self._client.put_bucket_policy(Bucket=bucket, Policy=policy)
        except (ClientError, BotoCoreError) as exc:
            raise _translate_error(exc, "set bucket policy") from exc
        return _status_of(response)

    def set_object_acl(self, *, bucket: str, key: str, acl: str) -> int:
        """Apply a canned ACL to an object."""
        try:
            response = self._client.put_object_acl(Bucket=bucket, Key=key, ACL=acl)
        except (ClientError, BotoCoreError) as exc:
            raise _translate_error(exc, "set object ACL") from exc
        return _status_of(response)

    def sign_url(
        self,
        *,
        bucket: str,
        key: str,
        method: str = "GET",
        expires_in: int,
    ) -> str:
        """Generate a presigned URL for ``method`` on one object."""
        operation = _PRESIGN_OPERATIONS.get(method.upper())
        if operation is None:
            raise BackendError(f"Unsupported presign method: {method}")
        try:
            url = self._client.generate_presigned_url(
                operation,
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=int(expires_in),
            )
        except (ClientError, BotoCoreError) as exc:
            raise _translate_error(exc, "generate signed URL") from exc

        if not url:
            raise BackendError("Generated signed URL is empty")

        return str(url)


def build_backend(
    *, endpoint: str, access_key: str, secret_key: str, settings: "Settings"
) -> S3StorageBackend:
    """Default connect function used by the storage client."""
    return S3StorageBackend(
        endpoint=endpoint,
        access_key=access_key,
        secret_key=secret_key,
        settings=settings,
    )
