"""Error taxonomy shared by the storage adapter and the storage service.

Adapters raise these exceptions; :class:`~obsput.services.storage_service.StorageClient`
catches them and attaches them to result records, so callers receive failures
as values rather than as raised exceptions.
"""

from __future__ import annotations


class ObsputError(RuntimeError):
    """Base class for all obsput failures."""


class ConnectivityError(ObsputError):
    """Raised when the endpoint cannot be reached before any backend call."""


class BackendError(ObsputError):
    """Raised when the backend rejects a request or answers with a non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class IntegrityError(BackendError):
    """Raised when the backend rejects the content checksum of an upload."""


class NotFoundError(ObsputError):
    """Raised when a bucket or profile does not exist."""


class FormatError(ObsputError, ValueError):
    """Raised when a version string or date expression cannot be parsed."""


class PartialDeletionError(ObsputError):
    """Raised when a deletion fails after some matched objects were removed."""

    def __init__(self, message: str, *, deleted: list[str], failed_key: str) -> None:
        super().__init__(message)
        self.deleted = list(deleted)
        self.failed_key = failed_key
