"""Version identifier generation.

A version looks like ``v1.0.0-<commit>-<YYYYMMDD>-<HHMMSS>-<counter>``. The
counter belongs to one :class:`VersionGenerator` instance and restarts at 1 in
every process, so two independent runs in the same second on the same commit
produce the same identifier. Uniqueness is only guaranteed per instance.
"""

from __future__ import annotations

import logging
import subprocess
from datetime import datetime
from typing import Callable

UNKNOWN_REVISION = "unknown"
DEFAULT_BASE = "v1.0.0"

logger = logging.getLogger("obsput.version")


def git_short_revision() -> str:
    """Return the short hash of ``HEAD``, or ``"unknown"`` outside a git checkout."""
    try:
        completed = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            capture_output=True,
            text=True,
            check=True,
            timeout=5,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("git revision lookup failed", exc_info=exc)
        return UNKNOWN_REVISION
    revision = completed.stdout.strip()
    return revision or UNKNOWN_REVISION


class VersionGenerator:
    """Produces structured version strings; one counter per instance."""

    def __init__(
        self,
        *,
        base: str = DEFAULT_BASE,
        revision_lookup: Callable[[], str] = git_short_revision,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._base = base
        self._revision_lookup = revision_lookup
        self._clock = clock
        self._counter = 0

    @property
    def counter(self) -> int:
        return self._counter

    def generate(self) -> str:
        commit = self._revision_lookup() or UNKNOWN_REVISION
        now = self._clock()
        self._counter += 1
        return (
            f"{self._base}-{commit}-{now.strftime('%Y%m%d')}"
            f"-{now.strftime('%H%M%S')}-{self._counter}"
        )
