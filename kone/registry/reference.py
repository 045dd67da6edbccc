"""Image reference parsing.

References follow the Docker grammar: [host[:port]/]path[:tag][@digest].
Missing parts take Docker Hub defaults: registry index.docker.io, the
'library/' namespace for single-component names, and tag 'latest'.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

# Host that actually serves the Docker Hub registry API
DOCKER_HUB_API_HOST = "registry-1.docker.io"

_DOCKER_HUB_ALIASES = {"docker.io", "index.docker.io", "registry-1.docker.io"}

_COMPONENT_PATTERN = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG_PATTERN = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST_PATTERN = re.compile(r"^sha256:[0-9a-f]{64}$")


class InvalidReferenceError(ValueError):
    """Raised when a string is not a valid image reference."""

    def __init__(self, message: str, code: str = "invalid_reference") -> None:
        super().__init__(message)
        self.code = code


def _is_registry(component: str) -> bool:
    return "." in component or ":" in component or component == "localhost"


@dataclass(frozen=True)
class Reference:
    """A parsed image reference.

    Attributes:
        registry: Registry host, with port if any (e.g. 'gcr.io', 'localhost:5000').
        repository: Repository path (e.g. 'library/node').
        tag: Tag, if the reference names one.
        digest: Manifest digest, if the reference pins one.
    """

    registry: str
    repository: str
    tag: str | None = None
    digest: str | None = None

    @classmethod
    def parse(cls, value: str) -> Reference:
        """Parse a reference string, filling in defaults.

        Raises:
            InvalidReferenceError: If the string is not a valid reference.
        """
        if not value or value != value.strip():
            raise InvalidReferenceError(f"invalid image reference {value!r}")

        remainder = value
        digest: str | None = None
        if "@" in remainder:
            remainder, digest = remainder.split("@", 1)
            if not _DIGEST_PATTERN.match(digest):
                raise InvalidReferenceError(
                    f"invalid digest {digest!r} in {value!r}", code="invalid_digest"
                )

        tag: str | None = None
        last_slash = remainder.rfind("/")
        colon = remainder.rfind(":")
        if colon > last_slash:
            remainder, tag = remainder[:colon], remainder[colon + 1 :]
            if not _TAG_PATTERN.match(tag):
                raise InvalidReferenceError(
                    f"invalid tag {tag!r} in {value!r}", code="invalid_tag"
                )

        parts = remainder.split("/")
        if len(parts) > 1 and _is_registry(parts[0]):
            registry, path_parts = parts[0], parts[1:]
        else:
            registry, path_parts = DEFAULT_REGISTRY, parts

        if registry in _DOCKER_HUB_ALIASES:
            registry = DEFAULT_REGISTRY
            if len(path_parts) == 1:
                path_parts = ["library", *path_parts]

        for component in path_parts:
            if not _COMPONENT_PATTERN.match(component):
                raise InvalidReferenceError(
                    f"invalid repository component {component!r} in {value!r}",
                    code="invalid_repository",
                )

        if tag is None and digest is None:
            tag = DEFAULT_TAG

        return cls(
            registry=registry,
            repository="/".join(path_parts),
            tag=tag,
            digest=digest,
        )

    @property
    def identifier(self) -> str:
        """Digest if pinned, else tag; what goes after /manifests/."""
        return self.digest or self.tag or DEFAULT_TAG

    @property
    def api_host(self) -> str:
        """Host serving the registry API for this reference."""
        if self.registry == DEFAULT_REGISTRY:
            return DOCKER_HUB_API_HOST
        return self.registry

    @property
    def context(self) -> str:
        """registry/repository without tag or digest."""
        return f"{self.registry}/{self.repository}"

    def with_tag(self, tag: str) -> Reference:
        return replace(self, tag=tag, digest=None)

    def with_digest(self, digest: str) -> Reference:
        return replace(self, tag=None, digest=digest)

    def __str__(self) -> str:
        if self.digest:
            return f"{self.context}@{self.digest}"
        return f"{self.context}:{self.tag or DEFAULT_TAG}"


__all__ = [
    "DEFAULT_REGISTRY",
    "DEFAULT_TAG",
    "DOCKER_HUB_API_HOST",
    "InvalidReferenceError",
    "Reference",
]
