"""Reading and writing whole images over the registry API.

This module handles:
- Resolving a reference (and a multi-platform index) to a single image
- Writing an image's blobs and manifest, skipping blobs already present
"""

from __future__ import annotations

import functools
import logging

from pydantic import ValidationError

from kone.images.image import Image
from kone.images.layer import ImageError, Layer, RemoteLayer
from kone.images.models import (
    INDEX_MEDIA_TYPES,
    MANIFEST_MEDIA_TYPES,
    ConfigFile,
    IndexManifest,
    Manifest,
    Platform,
)
from kone.registry.client import RegistryClient
from kone.registry.reference import Reference

logger = logging.getLogger(__name__)

DEFAULT_PLATFORM = "linux/amd64"


def _select_platform(
    raw: bytes, reference: Reference, platform: str
) -> str:
    """Return the digest of the index entry matching platform."""
    try:
        index = IndexManifest.model_validate_json(raw)
        wanted = Platform.parse(platform)
    except (ValidationError, ValueError) as e:
        raise ImageError(
            f"invalid index for {reference}: {e}", code="invalid_manifest"
        ) from e

    for descriptor in index.manifests:
        if descriptor.platform is not None and wanted.matches(descriptor.platform):
            return descriptor.digest

    raise ImageError(
        f"no image for platform {platform} in {reference}",
        code="platform_not_found",
    )


def fetch_image(
    reference: Reference,
    client: RegistryClient,
    platform: str = DEFAULT_PLATFORM,
) -> Image:
    """Fetch the manifest and config of an image; layers stay remote.

    Args:
        reference: Image to fetch.
        client: Client for reference.registry.
        platform: Platform picked when the reference names an index.

    Returns:
        Image whose layers are fetched lazily from the registry.

    Raises:
        RegistryError: If a registry request fails.
        ImageError: If the manifest or config is malformed or unsupported.
    """
    repository = reference.repository
    raw, media_type, _ = client.get_manifest(repository, reference.identifier)

    if media_type in INDEX_MEDIA_TYPES:
        digest = _select_platform(raw, reference, platform)
        logger.debug("Selected %s for %s from %s", digest[:19], platform, reference)
        raw, media_type, _ = client.get_manifest(repository, digest)

    if media_type not in MANIFEST_MEDIA_TYPES:
        raise ImageError(
            f"unsupported manifest type {media_type!r} for {reference}",
            code="unsupported_media_type",
        )

    try:
        manifest = Manifest.model_validate_json(raw)
        config = ConfigFile.model_validate_json(
            client.get_blob(repository, manifest.config.digest)
        )
    except ValidationError as e:
        raise ImageError(
            f"invalid image document for {reference}: {e}", code="invalid_manifest"
        ) from e

    diff_ids = config.rootfs.diff_ids
    if len(diff_ids) != len(manifest.layers):
        raise ImageError(
            f"{reference} lists {len(manifest.layers)} layers but "
            f"{len(diff_ids)} diff IDs",
            code="layer_mismatch",
        )

    layers = [
        RemoteLayer(
            layer_descriptor=descriptor,
            layer_diff_id=diff_id,
            registry=client.registry,
            repository=repository,
            fetch=functools.partial(client.get_blob, repository, descriptor.digest),
            media_type=descriptor.media_type,
        )
        for descriptor, diff_id in zip(manifest.layers, diff_ids)
    ]
    return Image(config, layers, media_type)


def _write_layer(client: RegistryClient, repository: str, layer: Layer) -> None:
    if client.blob_exists(repository, layer.digest):
        logger.debug("Layer %s already in %s", layer.digest[:19], repository)
        return

    if (
        isinstance(layer, RemoteLayer)
        and layer.registry == client.registry
        and layer.repository != repository
        and client.mount_blob(repository, layer.digest, layer.repository)
    ):
        logger.debug("Mounted %s from %s", layer.digest[:19], layer.repository)
        return

    client.upload_blob(repository, layer.digest, layer.compressed())


def write_manifest(reference: Reference, image: Image, client: RegistryClient) -> str:
    """Put image's manifest under reference's tag or digest.

    Returns:
        Digest of the manifest.
    """
    return client.put_manifest(
        reference.repository,
        reference.identifier,
        image.raw_manifest(),
        image.media_type,
    )


def write_image(reference: Reference, image: Image, client: RegistryClient) -> str:
    """Push an image: layers, then config, then manifest.

    Returns:
        Digest of the pushed manifest.

    Raises:
        RegistryError: If a registry request fails.
    """
    repository = reference.repository
    for layer in image.layers:
        _write_layer(client, repository, layer)

    config_digest = image.config_digest()
    if not client.blob_exists(repository, config_digest):
        client.upload_blob(repository, config_digest, image.raw_config_file())

    digest = write_manifest(reference, image, client)
    logger.info("Pushed %s@%s", reference.context, digest)
    return digest


__all__ = [
    "DEFAULT_PLATFORM",
    "fetch_image",
    "write_image",
    "write_manifest",
]
