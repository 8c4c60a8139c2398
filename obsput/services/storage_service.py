"""Storage client for versioned artifacts.

This module provides :class:`StorageClient`, which uploads, lists and deletes
versioned artifacts for one profile and derives their download URLs. Every
operation returns a result record: failures are reported through the
``error`` attribute and never raised to the caller.
"""

from __future__ import annotations

import base64
import hashlib
import io
import json
import logging
import socket
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator

from obsput.common.config import Settings, get_settings
from obsput.domain.errors import (
    BackendError,
    ConnectivityError,
    FormatError,
    ObsputError,
    PartialDeletionError,
)
from obsput.domain.keys import (
    build_download_url,
    build_key,
    extract_commit,
    format_size,
    parse_version_from_key,
    split_host_port,
    strip_scheme,
)
from obsput.domain.profiles import Profile
from obsput.infra.storage.client import ObjectEntry, ObjectStorageBackend
from obsput.infra.storage.s3_client import build_backend

DEFAULT_PORT = 443
PUBLIC_READ_WRITE = "public-read-write"

ProgressCallback = Callable[[int], None]
BackendFactory = Callable[..., ObjectStorageBackend]
EndpointProbe = Callable[[str, float], None]

logger = logging.getLogger("obsput.storage")


@dataclass(frozen=True, slots=True)
class UploadResult:
    """Outcome of an upload; advisory flags report the best-effort follow-ups."""

    success: bool
    version: str = ""
    key: str = ""
    url: str = ""
    signed_url: str = ""
    md5: str = ""
    size: int = 0
    bucket: str = ""
    profile: str = ""
    error: ObsputError | None = None
    policy_relaxed: bool = False
    acl_set: bool = False
    url_signed: bool = False

    @property
    def error_message(self) -> str:
        return str(self.error) if self.error else ""


@dataclass(frozen=True, slots=True)
class VersionInfo:
    """A listed object decoded into its version metadata."""

    key: str
    size: str
    date: str
    commit: str
    version: str
    url: str


@dataclass(frozen=True, slots=True)
class ListResult:
    success: bool
    versions: list[VersionInfo] = field(default_factory=list)
    profile: str = ""
    error: ObsputError | None = None

    @property
    def error_message(self) -> str:
        return str(self.error) if self.error else ""


@dataclass(frozen=True, slots=True)
class DeleteResult:
    """Outcome of a prefix deletion.

    Deletion is not atomic: ``deleted`` lists the keys already removed when a
    later key fails, and ``failed_key`` names the key that stopped the run.
    """

    success: bool
    version: str = ""
    deleted: tuple[str, ...] = ()
    failed_key: str = ""
    profile: str = ""
    error: ObsputError | None = None

    @property
    def error_message(self) -> str:
        return str(self.error) if self.error else ""


@dataclass(frozen=True, slots=True)
class BucketResult:
    success: bool
    profile: str = ""
    bucket: str = ""
    error: ObsputError | None = None

    @property
    def error_message(self) -> str:
        return str(self.error) if self.error else ""


def probe_endpoint(endpoint: str, timeout: float) -> None:
    """Open and close a TCP connection to the endpoint host.

    Raises:
        ConnectivityError: If the connection cannot be established within ``timeout``.
    """
    host, port = split_host_port(strip_scheme(endpoint).rstrip("/"))
    try:
        with socket.create_connection((host, port or DEFAULT_PORT), timeout=timeout):
            pass
    except OSError as exc:
        raise ConnectivityError(
            f"cannot connect to endpoint {endpoint}: {exc}"
        ) from exc


def anonymous_read_policy(bucket: str) -> str:
    """Bucket policy document granting anonymous ``GetObject``."""
    policy = {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Sid": "AnonymousRead",
                "Effect": "Allow",
                "Principal": {"AWS": "*"},
                "Action": ["s3:GetObject"],
                "Resource": [f"arn:aws:s3:::{bucket}/*"],
            }
        ],
    }
    return json.dumps(policy, separators=(",", ":"))


def content_md5(data: bytes) -> str:
    """Base64 MD5 digest, as carried by the Content-MD5 header."""
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


def _ensure_success(status: int, action: str) -> None:
    if status < 200 or status >= 300:
        raise BackendError(f"{action} failed with status: {status}", status_code=status)


class _ProgressReader(io.BytesIO):
    """In-memory body reporting the furthest offset read so far.

    botocore may read the whole body to hash it before rewinding and sending
    it, so on plain http endpoints the reported value can reach the total
    before the transfer starts. Values never decrease.
    """

    def __init__(self, data: bytes, callback: ProgressCallback) -> None:
        super().__init__(data)
        self._callback = callback
        self._reported = 0

    def read(self, size: int | None = -1) -> bytes:
        chunk = super().read(size)
        position = self.tell()
        if chunk and position > self._reported:
            self._reported = position
            self._callback(position)
        return chunk


class StorageClient:
    """Artifact operations against one profile's bucket.

    The backend session is created on first use. Creation is guarded by a lock
    so concurrent first calls on one instance share a single session.
    """

    def __init__(
        self,
        profile: Profile,
        *,
        settings: Settings | None = None,
        backend_factory: BackendFactory = build_backend,
        probe: EndpointProbe = probe_endpoint,
    ) -> None:
        self._profile = profile
        self._settings = settings or get_settings()
        self._backend_factory = backend_factory
        self._probe = probe
        self._backend: ObjectStorageBackend | None = None
        self._lock = threading.Lock()

    @property
    def profile(self) -> Profile:
        return self._profile

    @property
    def bucket(self) -> str:
        return self._profile.bucket

    @property
    def endpoint(self) -> str:
        return self._profile.endpoint

    @property
    def connected(self) -> bool:
        return self._backend is not None

    def _ensure_connected(self) -> ObjectStorageBackend:
        if self._backend is None:
            with self._lock:
                if self._backend is None:
                    self._backend = self._backend_factory(
                        endpoint=self._profile.endpoint,
                        access_key=self._profile.ak,
                        secret_key=self._profile.sk,
                        settings=self._settings,
                    )
                    logger.debug(
                        "storage session created",
                        extra={"profile": self._profile.name, "endpoint": self.endpoint},
                    )
        return self._backend

    def _prepare(self) -> ObjectStorageBackend:
        """Probe reachability, then return a connected backend."""
        self._probe(self.endpoint, self._settings.PROBE_TIMEOUT)
        return self._ensure_connected()

    def _iter_objects(
        self, backend: ObjectStorageBackend, prefix: str
    ) -> Iterator[ObjectEntry]:
        marker = ""
        while True:
            page = backend.list_objects(bucket=self.bucket, prefix=prefix, marker=marker)
            yield from page.items
            if not page.is_truncated:
                return
            if not page.next_marker or page.next_marker == marker:
                raise BackendError(
                    "listing is truncated but no continuation marker was returned"
                )
            marker = page.next_marker

    def _advise(self, action: str, call: Callable[[], int]) -> bool:
        """Run a best-effort follow-up; failures are logged and reported as False."""
        try:
            _ensure_success(call(), action)
        except ObsputError as exc:
            logger.warning(
                "%s failed: %s",
                action,
                exc,
                extra={"profile": self._profile.name, "bucket": self.bucket},
            )
            return False
        return True

    def download_url(self, key: str) -> str:
        return build_download_url(self.endpoint, self.bucket, key)

    def signed_download_url(self, key: str, hours: int | None = None) -> str:
        """Temporary GET URL for ``key``.

        Raises:
            ObsputError: If the session cannot be created or signing fails.
        """
        backend = self._ensure_connected()
        expires_in = int(hours or self._settings.SIGNED_URL_HOURS) * 3600
        return backend.sign_url(
            bucket=self.bucket, key=key, method="GET", expires_in=expires_in
        )

    def upload(
        self,
        file_path: str | Path,
        version: str,
        prefix: str = "",
        progress: ProgressCallback | None = None,
    ) -> UploadResult:
        """Upload one file under ``[prefix/]version/filename``.

        Success depends only on the put request. The bucket policy, object ACL
        and signed URL steps that follow are advisory and recorded on the
        result as ``policy_relaxed``, ``acl_set`` and ``url_signed``.
        """
        path = Path(file_path)
        try:
            backend = self._prepare()
        except ObsputError as exc:
            return self._upload_failure(version, exc)

        try:
            content = path.read_bytes()
        except OSError as exc:
            return self._upload_failure(
                version, ObsputError(f"cannot read {path}: {exc}")
            )

        md5 = content_md5(content)
        key = build_key(prefix, version, path.name)
        body = _ProgressReader(content, progress) if progress else content
        try:
            status = backend.put_object(
                bucket=self.bucket,
                key=key,
                body=body,
                content_md5=md5,
                content_length=len(content),
            )
            _ensure_success(status, "upload")
        except ObsputError as exc:
            return self._upload_failure(version, exc)

        logger.info(
            "uploaded %s",
            key,
            extra={
                "profile": self._profile.name,
                "bucket": self.bucket,
                "size": len(content),
            },
        )

        policy_relaxed = self._advise(
            "set bucket policy",
            lambda: backend.set_bucket_policy(
                bucket=self.bucket, policy=anonymous_read_policy(self.bucket)
            ),
        )
        acl_set = self._advise(
            "set object ACL",
            lambda: backend.set_object_acl(
                bucket=self.bucket, key=key, acl=PUBLIC_READ_WRITE
            ),
        )

        url = self.download_url(key)
        try:
            signed_url = self.signed_download_url(key)
            url_signed = True
        except ObsputError as exc:
            logger.warning(
                "signing download URL failed, using public URL: %s",
                exc,
                extra={"profile": self._profile.name, "key": key},
            )
            signed_url = url
            url_signed = False

        return UploadResult(
            success=True,
            version=version,
            key=key,
            url=url,
            signed_url=signed_url,
            md5=md5,
            size=len(content),
            bucket=self.bucket,
            profile=self._profile.name,
            policy_relaxed=policy_relaxed,
            acl_set=acl_set,
            url_signed=url_signed,
        )

    def _upload_failure(self, version: str, error: ObsputError) -> UploadResult:
        logger.info("upload failed: %s", error, extra={"profile": self._profile.name})
        return UploadResult(
            success=False,
            version=version,
            bucket=self.bucket,
            profile=self._profile.name,
            error=error,
        )

    def list_versions(self, prefix: str = "") -> ListResult:
        """List every versioned object under ``prefix``, following all pages."""
        try:
            backend = self._prepare()
            versions = [
                self._to_version_info(entry, version)
                for entry in self._iter_objects(backend, prefix)
                if (version := parse_version_from_key(entry.key))
            ]
        except ObsputError as exc:
            return ListResult(success=False, profile=self._profile.name, error=exc)
        return ListResult(success=True, versions=versions, profile=self._profile.name)

    def _to_version_info(self, entry: ObjectEntry, version: str) -> VersionInfo:
        return VersionInfo(
            key=entry.key,
            size=format_size(entry.size_bytes),
            date=entry.last_modified.strftime("%Y-%m-%d"),
            commit=extract_commit(version),
            version=version,
            url=self.download_url(entry.key),
        )

    def delete_version(self, version: str) -> DeleteResult:
        """Delete every object whose key starts with ``version``, one at a time.

        Stops at the first failure without restoring objects already deleted.
        The match is a bare prefix, so ``...-153045-1`` also removes objects
        under ``...-153045-10/``.
        """
        if not version:
            return DeleteResult(
                success=False,
                profile=self._profile.name,
                error=FormatError("version must not be empty"),
            )
        try:
            backend = self._prepare()
            keys = [entry.key for entry in self._iter_objects(backend, version)]
        except ObsputError as exc:
            return DeleteResult(
                success=False, version=version, profile=self._profile.name, error=exc
            )

        deleted: list[str] = []
        for key in keys:
            try:
                _ensure_success(
                    backend.delete_object(bucket=self.bucket, key=key), f"delete {key}"
                )
            except ObsputError as exc:
                error: ObsputError
                if deleted:
                    error = PartialDeletionError(
                        f"failed to delete {key} after deleting "
                        f"{len(deleted)} object(s): {exc}",
                        deleted=deleted,
                        failed_key=key,
                    )
                else:
                    error = BackendError(f"failed to delete {key}: {exc}")
                logger.warning("%s", error, extra={"profile": self._profile.name})
                return DeleteResult(
                    success=False,
                    version=version,
                    deleted=tuple(deleted),
                    failed_key=key,
                    profile=self._profile.name,
                    error=error,
                )
            deleted.append(key)
            logger.info("deleted %s", key, extra={"profile": self._profile.name})

        return DeleteResult(
            success=True,
            version=version,
            deleted=tuple(deleted),
            profile=self._profile.name,
        )

    def create_bucket(self) -> BucketResult:
        """Create the profile's bucket; an existing bucket is reported as an error."""
        try:
            backend = self._prepare()
            if backend.head_bucket(bucket=self.bucket):
                raise BackendError(f"bucket {self.bucket} already exists")
            _ensure_success(backend.create_bucket(bucket=self.bucket), "create bucket")
        except ObsputError as exc:
            return BucketResult(
                success=False, profile=self._profile.name, bucket=self.bucket, error=exc
            )
        logger.info("created bucket %s", self.bucket, extra={"profile": self._profile.name})
        return BucketResult(success=True, profile=self._profile.name, bucket=self.bucket)
