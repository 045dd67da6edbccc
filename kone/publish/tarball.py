"""Tarball publisher.

Collects published images and writes them into a single docker-save
tarball when closed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from pathlib import Path

from kone.config import LOCAL_REPO
from kone.images.image import Image
from kone.images.tarball import write_tarball_file
from kone.publish.default import DEFAULT_TAGS
from kone.publish.namer import preserve_package_name
from kone.types import Namer

logger = logging.getLogger(__name__)


class TarballPublisher:
    """Writes images to a tarball loadable with `docker load`.

    Args:
        path: Destination file, written by close().
        repo: Repository prefix recorded in the tarball's tags.
        tags: Tags recorded for every image.
        namer: Maps package names onto the path after repo.
    """

    def __init__(
        self,
        path: Path,
        repo: str = LOCAL_REPO,
        tags: Sequence[str] = DEFAULT_TAGS,
        namer: Namer = preserve_package_name,
    ) -> None:
        self.path = path
        self.repo = repo.rstrip("/")
        self.tags = list(tags)
        self.namer = namer
        self._lock = threading.Lock()
        self._entries: list[tuple[Image, list[str]]] = []

    def publish(self, image: Image, name: str) -> str:
        """Queue image for the tarball.

        Returns:
            'repo/name:<first tag>'.
        """
        repository = f"{self.repo}/{self.namer(name)}"
        refs = [f"{repository}:{tag}" for tag in self.tags]
        with self._lock:
            self._entries.append((image, refs))
        logger.debug("Queued %s for %s", repository, self.path)
        return refs[0]

    def close(self) -> None:
        """Write every queued image to the tarball."""
        with self._lock:
            entries = list(self._entries)
        if entries:
            write_tarball_file(entries, self.path)


__all__ = ["TarballPublisher"]
