from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

ENV_FILE = Path(".env")

LOG_FORMATS: tuple[str, ...] = ("plain", "json")
ADDRESSING_STYLES: tuple[str, ...] = ("path", "virtual", "auto")


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _as_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


def _as_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    return float(value)


def _default_config_path() -> str:
    return str(Path.home() / ".obsput.yaml")


@dataclass
class Settings:
    CONFIG_PATH: str = ""
    PROBE_TIMEOUT: float = 3.0
    SIGNED_URL_HOURS: int = 24
    S3_REGION: str = "us-east-1"
    S3_ADDRESSING_STYLE: str = "path"
    LOG_LEVEL: str = "WARNING"
    LOG_FORMAT: str = "plain"
    FANOUT_MAX_WORKERS: int | None = None

    def __post_init__(self) -> None:
        if not self.CONFIG_PATH:
            self.CONFIG_PATH = _default_config_path()
        if self.PROBE_TIMEOUT <= 0:
            raise ValueError("OBSPUT_PROBE_TIMEOUT must be a positive number of seconds.")
        if self.SIGNED_URL_HOURS <= 0:
            raise ValueError("OBSPUT_SIGNED_URL_HOURS must be a positive number of hours.")
        self.S3_ADDRESSING_STYLE = self.S3_ADDRESSING_STYLE.strip().lower()
        if self.S3_ADDRESSING_STYLE not in ADDRESSING_STYLES:
            raise ValueError(
                f"OBSPUT_S3_ADDRESSING_STYLE must be one of {', '.join(ADDRESSING_STYLES)}."
            )
        self.LOG_FORMAT = self.LOG_FORMAT.strip().lower()
        if self.LOG_FORMAT not in LOG_FORMATS:
            raise ValueError(f"OBSPUT_LOG_FORMAT must be one of {', '.join(LOG_FORMATS)}.")
        self.LOG_LEVEL = self.LOG_LEVEL.strip().upper()
        if self.FANOUT_MAX_WORKERS is not None and self.FANOUT_MAX_WORKERS < 1:
            raise ValueError("OBSPUT_FANOUT_MAX_WORKERS must be at least 1.")

    @property
    def config_path(self) -> Path:
        return Path(self.CONFIG_PATH).expanduser()

    @classmethod
    def from_environment(cls) -> "Settings":
        _load_env_file()
        max_workers_env = os.environ.get("OBSPUT_FANOUT_MAX_WORKERS")
        return cls(
            CONFIG_PATH=os.environ.get("OBSPUT_CONFIG", ""),
            PROBE_TIMEOUT=_as_float(
                os.environ.get("OBSPUT_PROBE_TIMEOUT"), cls.PROBE_TIMEOUT
            ),
            SIGNED_URL_HOURS=_as_int(
                os.environ.get("OBSPUT_SIGNED_URL_HOURS"), cls.SIGNED_URL_HOURS
            ),
            S3_REGION=os.environ.get("OBSPUT_S3_REGION", cls.S3_REGION),
            S3_ADDRESSING_STYLE=os.environ.get(
                "OBSPUT_S3_ADDRESSING_STYLE", cls.S3_ADDRESSING_STYLE
            ),
            LOG_LEVEL=os.environ.get("OBSPUT_LOG_LEVEL", cls.LOG_LEVEL),
            LOG_FORMAT=os.environ.get("OBSPUT_LOG_FORMAT", cls.LOG_FORMAT),
            FANOUT_MAX_WORKERS=(
                int(max_workers_env) if max_workers_env and max_workers_env.strip() else None
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()
