"""Node.js image assembly.

This module handles:
- Classifying source directories by their package.json
- Archiving app code and kodata into two layers
- Stacking the layers onto a resolved base image
- Rewriting entrypoint, working directory, environment and authorship

The image layout is fixed: app code under /ko-app, kodata under
/var/run/ko, entrypoint `node /ko-app/main.js`.
"""

from __future__ import annotations

import json
import logging
import posixpath
from datetime import datetime, timezone
from pathlib import Path

from kone.builds.archive import archive_directory
from kone.images.image import (
    Addendum,
    Image,
    append_layers,
    created_at,
    with_config_file,
)
from kone.images.layer import StaticLayer
from kone.images.models import History, format_time
from kone.types import MANIFEST_FILENAME, GetBase, LayerRole, SourceUnit

logger = logging.getLogger(__name__)

# Where app code lives in the image
APP_DIR = "/ko-app"

# Entry file run by node; the manifest's own "main" is not consulted
DEFAULT_APP_FILENAME = "main.js"

# Conventional static data directory at the source root
KODATA_DIRNAME = "kodata"

# Where kodata lives in the image
KODATA_ROOT = "/var/run/ko"

# Environment variable advertising KODATA_ROOT to the app
DATA_PATH_ENV = "KONE_DATA_PATH"

# Runtime interpreter in the entrypoint
NODE_BINARY = "node"

# History author for the layers we add
LAYER_AUTHOR = "kone"

# Author recorded in the image config
IMAGE_AUTHOR = "github.com/ibm/kone"


class BuildConfigurationError(Exception):
    """Raised when a builder is constructed without required collaborators."""

    def __init__(self, message: str, code: str = "build_configuration_error") -> None:
        super().__init__(message)
        self.code = code


def read_package_name(manifest_path: Path) -> str | None:
    """Return the non-empty 'name' of a package.json, or None.

    A missing, unreadable or malformed manifest is not an error; it
    classifies the directory as unsupported.
    """
    try:
        raw = manifest_path.read_bytes()
        data = json.loads(raw)
    except (OSError, ValueError, RecursionError):
        return None
    if not isinstance(data, dict):
        return None
    name = data.get("name")
    if not isinstance(name, str) or not name:
        return None
    return name


def app_filename(path: str) -> str:
    """Entry file for the app at path.

    For now this is always main.js.
    """
    return DEFAULT_APP_FILENAME


def kodata_path(source_dir: Path) -> Path:
    """Location of the kodata directory for a source directory."""
    return source_dir / KODATA_DIRNAME


class NodeBuilder:
    """Builds Node.js images on top of a resolved base image.

    Args:
        get_base: Resolves the base image for a source unit.
        creation_time: Fixed image creation time, if any.
    """

    def __init__(
        self,
        get_base: GetBase,
        creation_time: datetime | None = None,
    ) -> None:
        self._get_base = get_base
        self._creation_time = creation_time

    @property
    def creation_time(self) -> datetime | None:
        return self._creation_time

    def is_supported_reference(self, base_dir: str, path: str) -> str | None:
        """Return the package name if path holds a Node.js app."""
        unit = SourceUnit(base_dir, path)
        return read_package_name(unit.directory / MANIFEST_FILENAME)

    def _layer(self, source: Path, dest: str, missing_ok: bool = False) -> StaticLayer:
        blob = archive_directory(source, dest, missing_ok=missing_ok)
        return StaticLayer.from_bytes(blob)

    def _history(self, path: str, role: LayerRole) -> History:
        return History(
            author=LAYER_AUTHOR,
            created_by=f"kone publish {path}",
            created=format_time(datetime.now(timezone.utc)),
            comment=f"{role.value} layer",
        )

    def build(self, base_dir: str, path: str) -> Image:
        """Build the image for the app at base_dir/path.

        Raises:
            ArchiveError: If the app or kodata directory cannot be archived.
            ImageError: If the base image config is malformed.
            Exception: Whatever the base resolver raises, unchanged.
        """
        unit = SourceUnit(base_dir, path)
        source_dir = unit.directory

        app_path = posixpath.join(APP_DIR, app_filename(path))

        app_layer = self._layer(source_dir, APP_DIR)
        logger.debug("Application layer for %s: %s", path, app_layer.digest[:19])

        data_layer = self._layer(kodata_path(source_dir), KODATA_ROOT, missing_ok=True)
        logger.debug("Data layer for %s: %s", path, data_layer.digest[:19])

        base = self._get_base(unit)

        with_app = append_layers(
            base,
            Addendum(app_layer, self._history(path, LayerRole.APPLICATION)),
            Addendum(data_layer, self._history(path, LayerRole.DATA)),
        )

        cfg = with_app.config_file()
        cfg.config.entrypoint = [NODE_BINARY, app_path]
        cfg.config.working_dir = APP_DIR
        cfg.config.env = [*(cfg.config.env or []), f"{DATA_PATH_ENV}={KODATA_ROOT}"]
        cfg.container_config = cfg.config.model_copy(deep=True)
        cfg.author = IMAGE_AUTHOR

        image = with_config_file(with_app, cfg)

        if self._creation_time is not None:
            image = created_at(image, self._creation_time)

        logger.info("Built %s (%s)", path, image.digest()[:19])
        return image


def new_node_builder(
    get_base: GetBase | None,
    creation_time: datetime | None = None,
) -> NodeBuilder:
    """Create a NodeBuilder, failing fast without a base image source.

    Raises:
        BuildConfigurationError: If get_base is None.
    """
    if get_base is None:
        raise BuildConfigurationError(
            "a way of providing base images must be specified",
            code="missing_base_resolver",
        )
    return NodeBuilder(get_base=get_base, creation_time=creation_time)


__all__ = [
    "APP_DIR",
    "DATA_PATH_ENV",
    "DEFAULT_APP_FILENAME",
    "IMAGE_AUTHOR",
    "KODATA_DIRNAME",
    "KODATA_ROOT",
    "LAYER_AUTHOR",
    "BuildConfigurationError",
    "NodeBuilder",
    "app_filename",
    "kodata_path",
    "new_node_builder",
    "read_package_name",
]
