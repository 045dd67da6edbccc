"""Base image resolution.

This module handles:
- Reading a per-app base image override from package.json
- Falling back to the configured default base image
- Fetching each base image once and sharing it between builds
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from pathlib import Path

from kone.builds.future import Future
from kone.images.image import Image
from kone.registry.client import RegistryClient
from kone.registry.reference import InvalidReferenceError, Reference
from kone.registry.remote import DEFAULT_PLATFORM, fetch_image
from kone.types import SourceUnit

logger = logging.getLogger(__name__)

# package.json section holding kone options
MANIFEST_SECTION = "kone"

# Key of the base image override inside MANIFEST_SECTION
BASE_IMAGE_KEY = "defaultBaseImage"

# Returns a registry client for a registry host
ClientFactory = Callable[[str], RegistryClient]


def read_base_override(manifest_path: Path) -> str | None:
    """Return package.json's kone.defaultBaseImage, if set."""
    try:
        data = json.loads(manifest_path.read_bytes())
    except (OSError, ValueError, RecursionError):
        return None
    if not isinstance(data, dict):
        return None
    section = data.get(MANIFEST_SECTION)
    if not isinstance(section, dict):
        return None
    value = section.get(BASE_IMAGE_KEY)
    if not isinstance(value, str) or not value:
        return None
    return value


class BaseImageResolver:
    """Maps source units to base images.

    Args:
        default_base: Base image used when an app has no valid override.
        client_factory: Returns the registry client for a registry host.
        platform: Platform selected from multi-platform base images.

    Raises:
        InvalidReferenceError: If default_base is not a valid reference.
    """

    def __init__(
        self,
        default_base: str | Reference,
        client_factory: ClientFactory,
        platform: str = DEFAULT_PLATFORM,
    ) -> None:
        if isinstance(default_base, str):
            default_base = Reference.parse(default_base)
        self.default_base = default_base
        self.platform = platform
        self._client_factory = client_factory
        self._lock = threading.Lock()
        self._images: dict[Reference, Future[Image]] = {}

    def reference_for(self, unit: SourceUnit) -> Reference:
        """Pick the base image reference for a source unit."""
        override = read_base_override(unit.manifest_path)
        if override is None:
            return self.default_base
        try:
            return Reference.parse(override)
        except InvalidReferenceError as e:
            logger.warning(
                "Ignoring invalid %s.%s %r in %s: %s",
                MANIFEST_SECTION,
                BASE_IMAGE_KEY,
                override,
                unit.manifest_path,
                e,
            )
            return self.default_base

    def fetch(self, reference: Reference) -> Image:
        """Fetch a base image, once per reference.

        Raises:
            RegistryError: If the registry cannot serve the image.
            ImageError: If the image documents are malformed.
        """
        with self._lock:
            future = self._images.get(reference)
            if future is None:
                future = Future(lambda: self._fetch(reference))
                self._images[reference] = future
        return future.get()

    def _fetch(self, reference: Reference) -> Image:
        client = self._client_factory(reference.registry)
        return fetch_image(reference, client, platform=self.platform)

    def resolve(self, unit: SourceUnit) -> Image:
        """Return the base image for a source unit."""
        reference = self.reference_for(unit)
        logger.info("Using base %s for %s", reference, unit.path)
        return self.fetch(reference)


__all__ = [
    "BASE_IMAGE_KEY",
    "MANIFEST_SECTION",
    "BaseImageResolver",
    "ClientFactory",
    "read_base_override",
]
