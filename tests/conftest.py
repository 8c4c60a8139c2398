from __future__ import annotations

import pytest

from obsput.common.config import Settings, get_settings
from obsput.domain.profiles import Profile
from obsput.services.storage_service import StorageClient
from tests.services.mock_storage import MockStorageBackend


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    for name in (
        "OBSPUT_CONFIG",
        "OBSPUT_PROBE_TIMEOUT",
        "OBSPUT_SIGNED_URL_HOURS",
        "OBSPUT_S3_REGION",
        "OBSPUT_S3_ADDRESSING_STYLE",
        "OBSPUT_LOG_LEVEL",
        "OBSPUT_LOG_FORMAT",
        "OBSPUT_FANOUT_MAX_WORKERS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("OBSPUT_CONFIG", str(tmp_path / "obsput.yaml"))
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()  # type: ignore[attr-defined]
    yield
    get_settings.cache_clear()  # type: ignore[attr-defined]


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(CONFIG_PATH=str(tmp_path / "obsput.yaml"))


@pytest.fixture()
def profile() -> Profile:
    return Profile(
        name="prod",
        endpoint="obs.example.com",
        bucket="releases",
        ak="test-ak",
        sk="test-sk",
    )


@pytest.fixture()
def mock_backend() -> MockStorageBackend:
    backend = MockStorageBackend()
    backend.create_bucket(bucket="releases")
    backend.calls.clear()
    return backend


@pytest.fixture()
def probe_calls() -> list[tuple[str, float]]:
    return []


@pytest.fixture()
def make_client(settings, mock_backend, probe_calls):
    """Build StorageClients wired to the in-memory backend and a no-op probe."""

    def factory(profile: Profile, *, backend=None, probe=None) -> StorageClient:
        chosen = backend or mock_backend

        def record_probe(endpoint: str, timeout: float) -> None:
            probe_calls.append((endpoint, timeout))

        return StorageClient(
            profile,
            settings=settings,
            backend_factory=lambda **kwargs: chosen,
            probe=probe or record_probe,
        )

    return factory


@pytest.fixture()
def client(make_client, profile) -> StorageClient:
    return make_client(profile)
