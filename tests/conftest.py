"""Shared fixtures for kone tests."""

import gzip
import io
import json
import os
import tarfile

import pytest

from kone.images.image import Image
from kone.images.layer import StaticLayer
from kone.images.models import ConfigFile, ContainerConfig, History, RootFS


def make_layer(files: dict[str, bytes]) -> StaticLayer:
    """Build a static layer holding the given files."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
        for name, data in sorted(files.items()):
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return StaticLayer.from_bytes(gzip.compress(buf.getvalue(), mtime=0))


def make_base_image() -> Image:
    """A one-layer linux/amd64 image standing in for node:lts-slim."""
    layer = make_layer({"etc/os-release": b"ID=test\n"})
    cfg = ConfigFile(
        architecture="amd64",
        os="linux",
        created="2020-01-01T00:00:00Z",
        config=ContainerConfig(env=["PATH=/usr/local/bin:/usr/bin"], cmd=["node"]),
        rootfs=RootFS(diff_ids=[layer.diff_id]),
        history=[
            History(created_by="ADD rootfs.tar /", created="2020-01-01T00:00:00Z")
        ],
    )
    return Image(cfg, [layer])


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Run every test in an empty directory without kone variables."""
    for name in list(os.environ):
        if name.startswith("KO_") or name in ("SOURCE_DATE_EPOCH", "DOCKER_CONFIG"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def base_image():
    """Base image fixture."""
    return make_base_image()


@pytest.fixture
def node_app(tmp_path):
    """A base directory holding one Node.js app at app1/."""
    app = tmp_path / "app1"
    app.mkdir()
    (app / "package.json").write_text(json.dumps({"name": "app1", "version": "1.0.0"}))
    (app / "main.js").write_text("console.log('hello')\n")
    return tmp_path
