"""Tests for registry, daemon and tarball publishers."""

import io
import json
import subprocess
import tarfile
from unittest.mock import MagicMock, patch

import pytest

from kone.publish.daemon import DaemonPublisher
from kone.publish.default import PublishError, RegistryPublisher
from kone.publish.namer import package_with_md5
from kone.publish.tarball import TarballPublisher


def _loaded_tags(tarball: bytes) -> list[str]:
    with tarfile.open(fileobj=io.BytesIO(tarball), mode="r:") as tar:
        manifest = json.loads(tar.extractfile("manifest.json").read())
    return manifest[0]["RepoTags"]


class TestRegistryPublisher:
    """Tests for RegistryPublisher class."""

    def test_publish(self, base_image):
        """Should push under the first tag and return a digest reference."""
        client = MagicMock()
        registries = []

        def client_factory(registry):
            registries.append(registry)
            return client

        publisher = RegistryPublisher(
            "gcr.io/my-project", tags=["latest"], client_factory=client_factory
        )
        with patch(
            "kone.publish.default.write_image", return_value="sha256:abc"
        ) as write:
            result = publisher.publish(base_image, "@acme/web")

        assert result == "gcr.io/my-project/acme/web@sha256:abc"
        assert registries == ["gcr.io"]
        reference, image, used_client = write.call_args.args
        assert str(reference) == "gcr.io/my-project/acme/web:latest"
        assert image is base_image
        assert used_client is client

    def test_extra_tags(self, base_image):
        """Should put the manifest under every additional tag."""
        publisher = RegistryPublisher(
            "gcr.io/p", tags=["v1", "v2", "stable"], client_factory=lambda r: None
        )
        with patch("kone.publish.default.write_image", return_value="sha256:abc"):
            with patch("kone.publish.default.write_manifest") as tag:
                publisher.publish(base_image, "app1")

        assert [call.args[0].tag for call in tag.call_args_list] == ["v2", "stable"]

    def test_hashed_names(self, base_image):
        """Should use the configured namer."""
        publisher = RegistryPublisher(
            "gcr.io/p", namer=package_with_md5, client_factory=lambda r: None
        )

        assert publisher.repository("app1") == f"gcr.io/p/{package_with_md5('app1')}"

    def test_requires_tags(self):
        """Should reject an empty tag list."""
        with pytest.raises(PublishError) as exc_info:
            RegistryPublisher("gcr.io/p", tags=[])

        assert exc_info.value.code == "missing_tags"

    def test_invalid_repository(self, base_image):
        """Should reject repositories that do not form a valid reference."""
        publisher = RegistryPublisher(
            "gcr.io/My Project", client_factory=lambda r: None
        )

        with pytest.raises(PublishError) as exc_info:
            publisher.publish(base_image, "app1")

        assert exc_info.value.code == "invalid_repository"


class TestDaemonPublisher:
    """Tests for DaemonPublisher class."""

    def test_publish(self, base_image):
        """Should pipe a tagged tarball into docker load."""
        completed = subprocess.CompletedProcess(["docker", "load"], 0, b"", b"")
        with patch("kone.publish.daemon.subprocess.run", return_value=completed) as run:
            result = DaemonPublisher(tags=["latest"]).publish(base_image, "app1")

        hex_digest = base_image.digest().split(":")[1]
        assert result == f"ko.local/app1:{hex_digest}"
        assert run.call_args.args[0] == ["docker", "load"]
        assert _loaded_tags(run.call_args.kwargs["input"]) == [
            f"ko.local/app1:{hex_digest}",
            "ko.local/app1:latest",
        ]

    def test_load_failure(self, base_image):
        """Should raise PublishError with docker's stderr."""
        failed = subprocess.CompletedProcess(
            ["docker", "load"], 1, b"", b"Cannot connect to the Docker daemon"
        )
        with patch("kone.publish.daemon.subprocess.run", return_value=failed):
            with pytest.raises(PublishError) as exc_info:
                DaemonPublisher().publish(base_image, "app1")

        assert exc_info.value.code == "docker_load_failed"
        assert "Cannot connect" in str(exc_info.value)

    def test_docker_missing(self, base_image):
        """Should report a missing docker executable."""
        with patch(
            "kone.publish.daemon.subprocess.run", side_effect=FileNotFoundError
        ):
            with pytest.raises(PublishError) as exc_info:
                DaemonPublisher().publish(base_image, "app1")

        assert exc_info.value.code == "docker_not_found"

    def test_timeout(self, base_image):
        """Should report docker load timeouts."""
        with patch(
            "kone.publish.daemon.subprocess.run",
            side_effect=subprocess.TimeoutExpired(["docker", "load"], 5),
        ):
            with pytest.raises(PublishError) as exc_info:
                DaemonPublisher(timeout=5).publish(base_image, "app1")

        assert exc_info.value.code == "docker_timeout"


class TestTarballPublisher:
    """Tests for TarballPublisher class."""

    def test_publish_and_close(self, tmp_path, base_image):
        """Should write every published image when closed."""
        path = tmp_path / "images.tar"
        publisher = TarballPublisher(path, repo="ko.local", tags=["v1"])

        first = publisher.publish(base_image, "app1")
        second = publisher.publish(base_image, "app2")
        assert not path.exists()
        publisher.close()

        assert (first, second) == ("ko.local/app1:v1", "ko.local/app2:v1")
        with tarfile.open(path, mode="r:") as tar:
            manifest = json.loads(tar.extractfile("manifest.json").read())
        assert [entry["RepoTags"] for entry in manifest] == [
            ["ko.local/app1:v1"],
            ["ko.local/app2:v1"],
        ]

    def test_close_without_images(self, tmp_path):
        """Should not create a file when nothing was published."""
        path = tmp_path / "images.tar"

        TarballPublisher(path).close()

        assert not path.exists()
