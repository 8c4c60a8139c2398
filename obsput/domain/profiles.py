"""Named storage profiles and their YAML store.

The file layout matches the historical ``~/.obsput.yaml`` format::

    configs:
      prod:
        name: prod
        endpoint: obs.cn-north-4.myhuaweicloud.com
        bucket: releases
        ak: ...
        sk: ...
"""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from obsput.domain.errors import NotFoundError


class Profile(BaseModel):
    """One storage destination: endpoint, bucket and credentials."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    endpoint: str = Field(min_length=1)
    bucket: str = Field(min_length=1)
    ak: str = Field(min_length=1)
    sk: str = Field(min_length=1)

    def masked(self) -> dict[str, str]:
        """Profile fields safe for display, with the secret key hidden."""
        return {
            "name": self.name,
            "endpoint": self.endpoint,
            "bucket": self.bucket,
            "ak": self.ak,
            "sk": "****" if self.sk else "",
        }


class ProfileStore:
    """In-memory view of the profile file with explicit load/save."""

    def __init__(self, path: Path, profiles: dict[str, Profile] | None = None) -> None:
        self.path = path
        self._profiles: dict[str, Profile] = dict(profiles or {})

    @classmethod
    def load(cls, path: Path) -> "ProfileStore":
        """Read profiles from ``path``; a missing file yields an empty store.

        Raises:
            ValueError: If the file is not valid YAML or a profile is malformed.
        """
        path = Path(path).expanduser()
        if not path.exists():
            return cls(path)
        with path.open("r", encoding="utf-8") as fp:
            try:
                payload = yaml.safe_load(fp) or {}
            except yaml.YAMLError as exc:
                raise ValueError(f"Invalid profile file {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise ValueError(f"Invalid profile file {path}: top level must be a mapping")
        configs = payload.get("configs") or {}
        if not isinstance(configs, dict):
            raise ValueError(f"Invalid profile file {path}: 'configs' must be a mapping")
        profiles: dict[str, Profile] = {}
        for name, raw in configs.items():
            if raw is not None and not isinstance(raw, dict):
                raise ValueError(f"Invalid profile '{name}' in {path}: expected a mapping")
            data = dict(raw or {})
            data.setdefault("name", name)
            try:
                profiles[str(name)] = Profile.model_validate(data)
            except ValidationError as exc:
                raise ValueError(f"Invalid profile '{name}' in {path}: {exc}") from exc
        return cls(path, profiles)

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "configs": {
                name: profile.model_dump() for name, profile in self._profiles.items()
            }
        }
        with self.path.open("w", encoding="utf-8") as fp:
            yaml.safe_dump(payload, fp, sort_keys=True, allow_unicode=True)
        self.path.chmod(0o600)

    def add(self, profile: Profile) -> None:
        self._profiles[profile.name] = profile

    def get(self, name: str) -> Profile | None:
        return self._profiles.get(name)

    def remove(self, name: str) -> bool:
        return self._profiles.pop(name, None) is not None

    def exists(self, name: str) -> bool:
        return name in self._profiles

    def names(self) -> list[str]:
        return sorted(self._profiles)

    def profiles(self) -> list[Profile]:
        return [self._profiles[name] for name in self.names()]

    def select(self, name: str | None = None) -> list[Profile]:
        """Return the named profile, or every profile when ``name`` is empty.

        Raises:
            NotFoundError: If ``name`` is given and not configured.
        """
        if not name:
            return self.profiles()
        profile = self._profiles.get(name)
        if profile is None:
            raise NotFoundError(f"profile '{name}' not found")
        return [profile]

    def __len__(self) -> int:
        return len(self._profiles)
