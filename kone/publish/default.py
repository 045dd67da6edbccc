"""Registry publisher.

Pushes built images to KO_DOCKER_REPO/<name> under each requested tag.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from kone.builds.base import ClientFactory
from kone.images.image import Image
from kone.publish.namer import preserve_package_name
from kone.registry.client import ClientPool
from kone.registry.reference import InvalidReferenceError, Reference
from kone.registry.remote import write_image, write_manifest
from kone.types import Namer

logger = logging.getLogger(__name__)

DEFAULT_TAGS = ("latest",)


class PublishError(Exception):
    """Raised when an image cannot be published."""

    def __init__(self, message: str, code: str = "publish_error") -> None:
        super().__init__(message)
        self.code = code


class RegistryPublisher:
    """Publishes images to a container registry.

    Args:
        repo: Repository prefix (KO_DOCKER_REPO).
        tags: Tags applied to every image; the first one is pushed with blobs.
        namer: Maps package names onto the path after repo.
        client_factory: Returns the registry client for a registry host.

    Raises:
        PublishError: If no tags are given.
    """

    def __init__(
        self,
        repo: str,
        tags: Sequence[str] = DEFAULT_TAGS,
        namer: Namer = preserve_package_name,
        client_factory: ClientFactory | None = None,
    ) -> None:
        if not tags:
            raise PublishError("at least one tag is required", code="missing_tags")
        self.repo = repo.rstrip("/")
        self.tags = list(tags)
        self.namer = namer
        self._client_factory = client_factory or ClientPool()

    def repository(self, name: str) -> str:
        """Repository path an image for package name is pushed to."""
        return f"{self.repo}/{self.namer(name)}"

    def publish(self, image: Image, name: str) -> str:
        """Push image under every tag.

        Returns:
            'repo/name@sha256:...' of the pushed image.

        Raises:
            PublishError: If repo and name do not form a valid reference.
            RegistryError: If the push fails.
        """
        repository = self.repository(name)
        try:
            reference = Reference.parse(f"{repository}:{self.tags[0]}")
        except InvalidReferenceError as e:
            raise PublishError(
                f"cannot publish {name} to {repository}: {e}",
                code="invalid_repository",
            ) from e

        client = self._client_factory(reference.registry)
        digest = write_image(reference, image, client)
        for tag in self.tags[1:]:
            write_manifest(reference.with_tag(tag), image, client)
            logger.debug("Tagged %s:%s", repository, tag)

        published = f"{repository}@{digest}"
        logger.info("Published %s", published)
        return published


__all__ = ["DEFAULT_TAGS", "PublishError", "RegistryPublisher"]
