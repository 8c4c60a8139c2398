"""Run one storage operation across several profiles in parallel.

Each profile gets its own :class:`StorageClient` and its own worker thread.
Results are collected under a single lock and returned only once every
worker has finished; a failure for one profile never affects the others.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Sequence

from obsput.domain.errors import ObsputError
from obsput.domain.profiles import Profile
from obsput.services.storage_service import BucketResult, StorageClient

ClientFactory = Callable[[Profile], StorageClient]
ProfileOperation = Callable[[StorageClient], BucketResult]

logger = logging.getLogger("obsput.fanout")


@dataclass(frozen=True, slots=True)
class FanoutReport:
    """Aggregated results of a fan-out run, one entry per profile."""

    results: list[BucketResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for result in self.results if result.success)

    @property
    def fail_count(self) -> int:
        return len(self.results) - self.success_count

    def by_profile(self) -> dict[str, BucketResult]:
        return {result.profile: result for result in self.results}


class ProfileFanout:
    def __init__(
        self,
        client_factory: ClientFactory = StorageClient,
        *,
        max_workers: int | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._max_workers = max_workers

    def run(
        self, profiles: Sequence[Profile], operation: ProfileOperation
    ) -> FanoutReport:
        """Apply ``operation`` to a fresh client per profile and wait for all of them."""
        results: list[BucketResult] = []
        lock = threading.Lock()

        def unit(profile: Profile) -> None:
            try:
                result = operation(self._client_factory(profile))
            except Exception as exc:
                logger.exception(
                    "profile operation crashed", extra={"profile": profile.name}
                )
                error = exc if isinstance(exc, ObsputError) else ObsputError(str(exc))
                result = BucketResult(
                    success=False,
                    profile=profile.name,
                    bucket=profile.bucket,
                    error=error,
                )
            with lock:
                results.append(result)

        if not profiles:
            return FanoutReport()

        workers = self._max_workers or len(profiles)
        with ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="obsput-fanout"
        ) as pool:
            futures = [pool.submit(unit, profile) for profile in profiles]
            wait(futures)

        return FanoutReport(results=list(results))

    def create_buckets(self, profiles: Sequence[Profile]) -> FanoutReport:
        return self.run(profiles, lambda client: client.create_bucket())
