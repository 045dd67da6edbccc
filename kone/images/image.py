"""Immutable image values and the mutations applied to them.

An Image pairs a config file with an ordered tuple of layers. Every
mutation returns a new Image built from a deep copy of the source config,
so a base image shared between builds is never modified in place.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from kone.images.layer import ImageError, Layer, sha256_digest
from kone.images.models import (
    DOCKER_CONFIG_JSON,
    DOCKER_LAYER,
    DOCKER_MANIFEST_SCHEMA2,
    OCI_CONFIG_JSON,
    OCI_LAYER,
    OCI_MANIFEST,
    ConfigFile,
    Descriptor,
    History,
    Manifest,
    format_time,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Addendum:
    """A layer to append together with its history entry."""

    layer: Layer
    history: History


class Image:
    """A single-platform image: config file plus layers.

    Args:
        config_file: Image configuration; copied, never aliased.
        layers: Layers in application order (base first).
        media_type: Manifest media type (Docker schema 2 or OCI).

    Raises:
        ImageError: If the config's diff IDs do not match the layers.
    """

    def __init__(
        self,
        config_file: ConfigFile,
        layers: Sequence[Layer] = (),
        media_type: str = DOCKER_MANIFEST_SCHEMA2,
    ) -> None:
        self._config = config_file.model_copy(deep=True)
        self._layers = tuple(layers)
        self._media_type = media_type

        diff_ids = self._config.rootfs.diff_ids
        if len(diff_ids) != len(self._layers):
            raise ImageError(
                f"config lists {len(diff_ids)} diff IDs but image has "
                f"{len(self._layers)} layers",
                code="layer_mismatch",
            )

        self._raw_config = self._config.to_json_bytes()

    @property
    def media_type(self) -> str:
        return self._media_type

    @property
    def config_media_type(self) -> str:
        if self._media_type == OCI_MANIFEST:
            return OCI_CONFIG_JSON
        return DOCKER_CONFIG_JSON

    @property
    def layers(self) -> tuple[Layer, ...]:
        return self._layers

    def config_file(self) -> ConfigFile:
        """Return a deep copy of the config file."""
        return self._config.model_copy(deep=True)

    def raw_config_file(self) -> bytes:
        return self._raw_config

    def config_digest(self) -> str:
        return sha256_digest(self._raw_config)

    def manifest(self) -> Manifest:
        """Build the manifest describing this image."""
        return Manifest(
            schema_version=2,
            media_type=self._media_type,
            config=Descriptor(
                media_type=self.config_media_type,
                size=len(self._raw_config),
                digest=self.config_digest(),
            ),
            layers=[layer.descriptor() for layer in self._layers],
        )

    def raw_manifest(self) -> bytes:
        return self.manifest().to_json_bytes()

    def digest(self) -> str:
        """Digest of the manifest, which identifies the image."""
        return sha256_digest(self.raw_manifest())

    def layer_by_digest(self, digest: str) -> Layer:
        for layer in self._layers:
            if layer.digest == digest:
                return layer
        raise ImageError(f"no layer with digest {digest}", code="layer_not_found")

    def __repr__(self) -> str:
        return f"Image(digest={self.digest()!r}, layers={len(self._layers)})"


def _layer_for_manifest(layer: Layer, manifest_media_type: str) -> Layer:
    """Advertise a layer under the layer media type matching the manifest."""
    if manifest_media_type == OCI_MANIFEST and layer.media_type == DOCKER_LAYER:
        return layer.with_media_type(OCI_LAYER)
    if manifest_media_type == DOCKER_MANIFEST_SCHEMA2 and layer.media_type == OCI_LAYER:
        return layer.with_media_type(DOCKER_LAYER)
    return layer


def append_layers(base: Image, *addenda: Addendum) -> Image:
    """Return a new image with layers appended to base.

    Each layer's diff ID is added to rootfs and its history entry to the
    history, on a copy of the base config.
    """
    cfg = base.config_file()
    layers = list(base.layers)
    for addendum in addenda:
        layer = _layer_for_manifest(addendum.layer, base.media_type)
        layers.append(layer)
        cfg.rootfs.diff_ids.append(layer.diff_id)
        cfg.history.append(addendum.history.model_copy(deep=True))
        logger.debug("Appended layer %s", layer.digest[:19])
    return Image(cfg, layers, base.media_type)


def with_config_file(base: Image, cfg: ConfigFile) -> Image:
    """Return a new image with base's layers and the given config."""
    return Image(cfg, base.layers, base.media_type)


def created_at(base: Image, when: datetime) -> Image:
    """Return a new image whose creation time is set to when."""
    cfg = base.config_file()
    cfg.created = format_time(when)
    return with_config_file(base, cfg)


__all__ = [
    "Addendum",
    "Image",
    "append_layers",
    "created_at",
    "with_config_file",
]
