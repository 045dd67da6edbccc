"""Shared type definitions for kone.

This module contains dataclasses, protocols, and type aliases shared across
subpackages to avoid circular imports.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from kone.images.image import Image

# Conventional manifest file at the root of a source unit
MANIFEST_FILENAME = "package.json"


class LayerRole(str, Enum):
    """Role of a layer produced by a build."""

    APPLICATION = "application"
    DATA = "data"


@dataclass(frozen=True)
class SourceUnit:
    """One buildable app directory, identified by (base_dir, path)."""

    base_dir: str
    path: str

    @property
    def directory(self) -> Path:
        """Absolute-or-relative directory holding the app sources."""
        return Path(self.base_dir) / self.path

    @property
    def manifest_path(self) -> Path:
        """Location of the unit's package.json."""
        return self.directory / MANIFEST_FILENAME

    @property
    def key(self) -> str:
        """Normalized join of base_dir and path."""
        return os.path.normpath(os.path.join(self.base_dir, self.path))


class BuildInterface(Protocol):
    """Contract implemented by builders and the caching decorator."""

    def is_supported_reference(self, base_dir: str, path: str) -> str | None:
        """Return the canonical package name, or None if unsupported."""
        ...

    def build(self, base_dir: str, path: str) -> Image:
        """Build the image for a source unit."""
        ...


class Publisher(Protocol):
    """Destination for built images."""

    def publish(self, image: Image, name: str) -> str:
        """Publish an image under a package name, returning its reference."""
        ...


# Resolves the starting image for a source unit
GetBase = Callable[[SourceUnit], "Image"]

# Maps a package name to a repository path component
Namer = Callable[[str], str]


__all__ = [
    "MANIFEST_FILENAME",
    "BuildInterface",
    "GetBase",
    "LayerRole",
    "Namer",
    "Publisher",
    "SourceUnit",
]
