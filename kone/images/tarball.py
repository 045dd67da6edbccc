"""Docker-save style tarball export.

The tarball holds the config blob, every layer blob and a manifest.json
listing them, which is the format `docker load` consumes. Several images
can share one tarball; blobs they have in common are written once.
"""

from __future__ import annotations

import io
import json
import logging
import tarfile
from collections.abc import Sequence
from pathlib import Path
from typing import BinaryIO

from kone.images.image import Image

logger = logging.getLogger(__name__)

# Mode of entries in the exported tarball
TARBALL_FILE_MODE = 0o644


def _add_bytes(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mode = TARBALL_FILE_MODE
    tar.addfile(info, io.BytesIO(data))


def _blob_name(digest: str, suffix: str) -> str:
    return digest.split(":", 1)[1] + suffix


def write_multi_tarball(
    entries: Sequence[tuple[Image, Sequence[str]]], fileobj: BinaryIO
) -> None:
    """Write several images, each with its repository tags, into one tarball.

    Args:
        entries: (image, tags) pairs; tags look like 'ko.local/app:latest'.
        fileobj: Writable binary file object.
    """
    written: set[str] = set()
    manifest: list[dict] = []

    with tarfile.open(fileobj=fileobj, mode="w|", format=tarfile.PAX_FORMAT) as tar:
        for image, tags in entries:
            config_name = _blob_name(image.config_digest(), ".json")
            if config_name not in written:
                _add_bytes(tar, config_name, image.raw_config_file())
                written.add(config_name)

            layer_names: list[str] = []
            for layer in image.layers:
                name = _blob_name(layer.digest, ".tar.gz")
                if name not in written:
                    logger.debug("Writing layer %s to tarball", layer.digest[:19])
                    _add_bytes(tar, name, layer.compressed())
                    written.add(name)
                layer_names.append(name)

            manifest.append(
                {
                    "Config": config_name,
                    "RepoTags": list(tags),
                    "Layers": layer_names,
                }
            )

        _add_bytes(tar, "manifest.json", json.dumps(manifest).encode("utf-8"))


def write_tarball(image: Image, tags: Sequence[str], fileobj: BinaryIO) -> None:
    """Write a single image as a docker-save tarball."""
    write_multi_tarball([(image, tags)], fileobj)


def tarball_bytes(image: Image, tags: Sequence[str]) -> bytes:
    """Return the docker-save tarball of image as bytes."""
    buf = io.BytesIO()
    write_tarball(image, tags, buf)
    return buf.getvalue()


def write_tarball_file(
    entries: Sequence[tuple[Image, Sequence[str]]], path: Path
) -> Path:
    """Write the docker-save tarball of one or more images to path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as f:
        write_multi_tarball(entries, f)
    logger.info("Wrote image tarball %s", path)
    return path


__all__ = [
    "TARBALL_FILE_MODE",
    "tarball_bytes",
    "write_multi_tarball",
    "write_tarball",
    "write_tarball_file",
]
