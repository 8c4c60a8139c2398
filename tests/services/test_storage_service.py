"""Tests for StorageClient."""

from __future__ import annotations

import base64
import hashlib
import json
import threading
from datetime import datetime, timezone

import pytest

from obsput.domain.errors import (
    BackendError,
    ConnectivityError,
    FormatError,
    IntegrityError,
    NotFoundError,
    ObsputError,
    PartialDeletionError,
)
from obsput.domain.profiles import Profile
from obsput.services.storage_service import (
    StorageClient,
    _ProgressReader,
    anonymous_read_policy,
    content_md5,
    probe_endpoint,
)
from tests.services.mock_storage import MockStorageBackend

VERSION = "v1.0.0-abc123-20260214-153045-1"


@pytest.fixture()
def artifact(tmp_path):
    path = tmp_path / "app.tar.gz"
    path.write_bytes(b"artifact-bytes" * 100)
    return path


def _unreachable(endpoint: str, timeout: float) -> None:
    raise ConnectivityError(f"cannot connect to endpoint {endpoint}: refused")


class TestConnection:
    def test_connects_lazily_on_first_operation(self, client):
        assert client.connected is False

        client.list_versions()

        assert client.connected is True

    def test_backend_factory_receives_profile_credentials(self, settings, profile):
        seen = {}

        def factory(**kwargs):
            seen.update(kwargs)
            return MockStorageBackend()

        client = StorageClient(
            profile, settings=settings, backend_factory=factory, probe=lambda e, t: None
        )
        client.list_versions()

        assert seen["endpoint"] == "obs.example.com"
        assert seen["access_key"] == "test-ak"
        assert seen["secret_key"] == "test-sk"
        assert seen["settings"] is settings

    def test_concurrent_first_use_creates_one_session(self, settings, profile):
        created = []
        gate = threading.Barrier(8)

        def factory(**kwargs):
            created.append(1)
            return MockStorageBackend()

        client = StorageClient(
            profile, settings=settings, backend_factory=factory, probe=lambda e, t: None
        )

        def worker():
            gate.wait()
            client.list_versions()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(created) == 1

    def test_probe_runs_before_every_operation(self, client, probe_calls, artifact):
        client.list_versions()
        client.upload(artifact, VERSION)

        assert probe_calls == [("obs.example.com", 3.0), ("obs.example.com", 3.0)]

    def test_unreachable_endpoint_skips_backend(self, make_client, profile, mock_backend, artifact):
        client = make_client(profile, probe=_unreachable)

        upload = client.upload(artifact, VERSION)
        listing = client.list_versions()
        deletion = client.delete_version(VERSION)
        bucket = client.create_bucket()

        for result in (upload, listing, deletion, bucket):
            assert result.success is False
            assert isinstance(result.error, ConnectivityError)
        assert mock_backend.calls == []
        assert client.connected is False


class TestProbeEndpoint:
    def test_defaults_to_port_443(self, monkeypatch):
        calls = []

        class _Conn:
            def __enter__(self):
                return self

            def __exit__(self, *exc):
                return False

        def fake_connect(address, timeout):
            calls.append((address, timeout))
            return _Conn()

        monkeypatch.setattr("socket.create_connection", fake_connect)

        probe_endpoint("https://obs.example.com", 3.0)
        probe_endpoint("http://127.0.0.1:9000", 1.5)

        assert calls == [(("obs.example.com", 443), 3.0), (("127.0.0.1", 9000), 1.5)]

    def test_connection_failure_raises_connectivity_error(self, monkeypatch):
        def refuse(address, timeout):
            raise ConnectionRefusedError("refused")

        monkeypatch.setattr("socket.create_connection", refuse)

        with pytest.raises(ConnectivityError, match="cannot connect to endpoint"):
            probe_endpoint("localhost:9000", 3.0)


class TestUpload:
    def test_uploads_with_content_md5(self, client, mock_backend, artifact):
        result = client.upload(artifact, VERSION, prefix="builds")

        expected_md5 = base64.b64encode(
            hashlib.md5(artifact.read_bytes()).digest()
        ).decode()
        assert result.success is True
        assert result.key == f"builds/{VERSION}/app.tar.gz"
        assert result.md5 == expected_md5
        assert result.size == artifact.stat().st_size
        assert result.version == VERSION
        assert result.bucket == "releases"
        assert result.profile == "prod"
        assert result.error is None
        put = mock_backend.calls_to("put_object")[0]
        assert put["content_md5"] == expected_md5
        assert mock_backend.keys("releases") == [f"builds/{VERSION}/app.tar.gz"]

    def test_key_without_prefix(self, client, artifact):
        result = client.upload(artifact, VERSION)

        assert result.key == f"{VERSION}/app.tar.gz"

    def test_public_and_signed_urls(self, client, artifact):
        result = client.upload(artifact, VERSION)

        assert result.url == f"https://releases.obs.example.com/{VERSION}/app.tar.gz"
        assert result.signed_url.startswith(f"https://mock-s3/releases/{VERSION}/app.tar.gz?")
        assert "X-Amz-Expires=86400" in result.signed_url
        assert result.url_signed is True

    def test_applies_advisory_follow_ups(self, client, mock_backend, artifact):
        result = client.upload(artifact, VERSION)

        assert result.policy_relaxed is True
        assert result.acl_set is True
        policy = json.loads(mock_backend.policies["releases"])
        assert policy["Statement"][0]["Resource"] == ["arn:aws:s3:::releases/*"]
        assert mock_backend.calls_to("set_object_acl")[0]["acl"] == "public-read-write"

    def test_advisory_failures_do_not_fail_upload(self, client, mock_backend, artifact):
        mock_backend.failures["set_bucket_policy"] = BackendError("AccessDenied")
        mock_backend.failures["set_object_acl"] = BackendError("AccessDenied")
        mock_backend.failures["sign_url"] = BackendError("signing unavailable")

        result = client.upload(artifact, VERSION)

        assert result.success is True
        assert result.policy_relaxed is False
        assert result.acl_set is False
        assert result.url_signed is False
        assert result.signed_url == result.url

    def test_non_2xx_status_fails(self, client, mock_backend, artifact):
        mock_backend.put_status = 403

        result = client.upload(artifact, VERSION)

        assert result.success is False
        assert isinstance(result.error, BackendError)
        assert result.error.status_code == 403
        assert "403" in result.error_message
        assert mock_backend.calls_to("set_bucket_policy") == []

    def test_integrity_rejection_is_reported(self, client, mock_backend, artifact):
        mock_backend.failures["put_object"] = IntegrityError("checksum rejected (BadDigest)")

        result = client.upload(artifact, VERSION)

        assert result.success is False
        assert isinstance(result.error, IntegrityError)

    def test_missing_file_is_reported(self, client, tmp_path):
        result = client.upload(tmp_path / "missing.bin", VERSION)

        assert result.success is False
        assert "cannot read" in result.error_message

    def test_progress_callback_reports_bytes(self, client, artifact):
        seen: list[int] = []

        result = client.upload(artifact, VERSION, progress=seen.append)

        assert result.success is True
        assert seen
        assert seen[-1] == artifact.stat().st_size


def test_progress_reader_never_goes_backwards():
    seen: list[int] = []
    reader = _ProgressReader(b"x" * 10, seen.append)

    reader.read()
    reader.seek(0)
    reader.read(4)
    reader.read()

    assert seen == [10]


class TestListVersions:
    def test_paginates_until_not_truncated(self, client, mock_backend):
        for index in range(1001):
            mock_backend.add_object(
                "releases", f"v1.0.0-abc123-20260214-153045-{index:04d}/app.bin"
            )

        result = client.list_versions()

        assert result.success is True
        assert len(result.versions) == 1001
        assert all(info.version for info in result.versions)
        markers = [call["marker"] for call in mock_backend.calls_to("list_objects")]
        assert markers == ["", "v1.0.0-abc123-20260214-153045-0999/app.bin"]

    def test_extracts_version_metadata(self, client, mock_backend):
        mock_backend.add_object(
            "releases",
            f"builds/{VERSION}/app.tar.gz",
            size_bytes=5 * 1024 * 1024,
            last_modified=datetime(2026, 2, 14, 23, 59, tzinfo=timezone.utc),
        )

        [info] = client.list_versions().versions

        assert info.key == f"builds/{VERSION}/app.tar.gz"
        assert info.version == VERSION
        assert info.commit == "abc123"
        assert info.size == "5.0 MB"
        assert info.date == "2026-02-14"
        assert info.url == f"https://releases.obs.example.com/builds/{VERSION}/app.tar.gz"

    def test_skips_keys_without_version(self, client, mock_backend):
        mock_backend.add_object("releases", "README.txt")
        mock_backend.add_object("releases", "docs/latest/index.html")
        mock_backend.add_object("releases", f"{VERSION}/app.bin")

        result = client.list_versions()

        assert [info.version for info in result.versions] == [VERSION]

    def test_passes_prefix(self, client, mock_backend):
        mock_backend.add_object("releases", f"app/{VERSION}/a.bin")
        mock_backend.add_object("releases", f"other/{VERSION}/b.bin")

        result = client.list_versions("app/")

        assert [info.key for info in result.versions] == [f"app/{VERSION}/a.bin"]
        assert mock_backend.calls_to("list_objects")[0]["prefix"] == "app/"

    def test_backend_error_is_returned(self, client, mock_backend):
        mock_backend.failures["list_objects"] = BackendError("InvalidAccessKeyId")

        result = client.list_versions()

        assert result.success is False
        assert result.versions == []
        assert "InvalidAccessKeyId" in result.error_message


class TestDeleteVersion:
    def test_zero_matches_is_success(self, client, mock_backend):
        mock_backend.add_object("releases", "v9.9.9-other-20260101-000000-1/app.bin")

        result = client.delete_version("vX")

        assert result.success is True
        assert result.deleted == ()
        assert mock_backend.calls_to("delete_object") == []

    def test_deletes_all_matching_objects(self, client, mock_backend):
        mock_backend.add_object("releases", f"{VERSION}/a.bin")
        mock_backend.add_object("releases", f"{VERSION}/b.bin")
        mock_backend.add_object("releases", "v1.0.0-def456-20260215-101010-1/a.bin")

        result = client.delete_version(VERSION)

        assert result.success is True
        assert result.deleted == (f"{VERSION}/a.bin", f"{VERSION}/b.bin")
        assert mock_backend.keys("releases") == ["v1.0.0-def456-20260215-101010-1/a.bin"]

    def test_bare_version_prefix_matches_longer_counter(self, client, mock_backend):
        mock_backend.add_object("releases", f"{VERSION}/a.bin")
        mock_backend.add_object("releases", f"{VERSION}0/a.bin")

        result = client.delete_version(VERSION)

        assert result.deleted == (f"{VERSION}/a.bin", f"{VERSION}0/a.bin")
        assert mock_backend.keys("releases") == []

    def test_partial_failure_keeps_prior_deletions(self, client, mock_backend):
        keys = [f"{VERSION}/part-{index}.bin" for index in range(6)]
        for key in keys:
            mock_backend.add_object("releases", key)
        failing = keys[3]
        mock_backend.failures[f"delete_object:{failing}"] = BackendError("InternalError")

        result = client.delete_version(VERSION)

        assert result.success is False
        assert isinstance(result.error, PartialDeletionError)
        assert result.failed_key == failing
        assert failing in result.error_message
        assert result.deleted == tuple(keys[:3])
        assert result.error.deleted == keys[:3]
        assert mock_backend.keys("releases") == keys[3:]

    def test_first_deletion_failure_is_backend_error(self, client, mock_backend):
        key = f"{VERSION}/a.bin"
        mock_backend.add_object("releases", key)
        mock_backend.failures[f"delete_object:{key}"] = BackendError("AccessDenied")

        result = client.delete_version(VERSION)

        assert result.success is False
        assert type(result.error) is BackendError
        assert result.deleted == ()
        assert result.failed_key == key

    def test_empty_version_is_rejected(self, client, mock_backend):
        mock_backend.add_object("releases", f"{VERSION}/a.bin")

        result = client.delete_version("")

        assert result.success is False
        assert isinstance(result.error, FormatError)
        assert mock_backend.keys("releases") == [f"{VERSION}/a.bin"]


class TestCreateBucket:
    def test_creates_missing_bucket(self, make_client, mock_backend):
        profile = Profile(
            name="dev", endpoint="127.0.0.1:9000", bucket="fresh", ak="a", sk="s"
        )

        result = make_client(profile).create_bucket()

        assert result.success is True
        assert result.profile == "dev"
        assert result.bucket == "fresh"
        assert "fresh" in mock_backend.buckets

    def test_existing_bucket_is_an_error(self, client, mock_backend):
        result = client.create_bucket()

        assert result.success is False
        assert "already exists" in result.error_message
        assert mock_backend.calls_to("create_bucket") == []

    def test_head_failure_is_reported(self, client, mock_backend):
        mock_backend.failures["head_bucket"] = BackendError("Forbidden")

        result = client.create_bucket()

        assert result.success is False
        assert isinstance(result.error, ObsputError)
        assert mock_backend.calls_to("create_bucket") == []


class TestUrls:
    @pytest.mark.parametrize(
        ("endpoint", "expected"),
        [
            ("http://127.0.0.1:9000", "http://127.0.0.1:9000/releases/v1/a.bin"),
            ("localhost", "http://localhost/releases/v1/a.bin"),
            ("https://obs.example.com", "https://releases.obs.example.com/v1/a.bin"),
        ],
    )
    def test_download_url(self, make_client, endpoint, expected):
        profile = Profile(name="p", endpoint=endpoint, bucket="releases", ak="a", sk="s")

        assert make_client(profile).download_url("v1/a.bin") == expected

    def test_signed_download_url_uses_hours(self, client, mock_backend):
        url = client.signed_download_url("v1/a.bin", hours=2)

        assert "X-Amz-Expires=7200" in url
        assert mock_backend.calls_to("sign_url")[0]["method"] == "GET"

    def test_signing_error_propagates(self, client, mock_backend):
        mock_backend.failures["sign_url"] = NotFoundError("no such key")

        with pytest.raises(NotFoundError):
            client.signed_download_url("v1/a.bin")


def test_content_md5_is_base64_digest():
    assert content_md5(b"") == "1B2M2Y8AsgTpgAmY7PhCfg=="


def test_anonymous_read_policy_targets_bucket_objects():
    policy = json.loads(anonymous_read_policy("releases"))

    statement = policy["Statement"][0]
    assert statement["Effect"] == "Allow"
    assert statement["Principal"] == {"AWS": "*"}
    assert statement["Action"] == ["s3:GetObject"]
