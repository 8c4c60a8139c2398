from .fanout import FanoutReport, ProfileFanout
from .storage_service import (
    BucketResult,
    DeleteResult,
    ListResult,
    StorageClient,
    UploadResult,
    VersionInfo,
)

__all__ = [
    "StorageClient",
    "UploadResult",
    "VersionInfo",
    "ListResult",
    "DeleteResult",
    "BucketResult",
    "ProfileFanout",
    "FanoutReport",
]
