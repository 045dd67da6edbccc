"""Image layers.

A layer is a gzip-compressed tar blob identified by two digests: the digest
of the compressed blob (what registries store) and the diff ID, the digest
of the uncompressed tar (what image configs list under rootfs).
"""

from __future__ import annotations

import gzip
import hashlib
import zlib
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from kone.images.models import DOCKER_LAYER, Descriptor


class ImageError(Exception):
    """Raised when an image or layer is malformed."""

    def __init__(self, message: str, code: str = "image_error") -> None:
        super().__init__(message)
        self.code = code


def sha256_digest(data: bytes) -> str:
    """Return the 'sha256:<hex>' digest of data."""
    return "sha256:" + hashlib.sha256(data).hexdigest()


class Layer:
    """Common interface of static and remote layers."""

    media_type: str

    @property
    def digest(self) -> str:
        raise NotImplementedError

    @property
    def diff_id(self) -> str:
        raise NotImplementedError

    @property
    def size(self) -> int:
        raise NotImplementedError

    def compressed(self) -> bytes:
        """Return the compressed blob."""
        raise NotImplementedError

    def with_media_type(self, media_type: str) -> Layer:
        """Return a copy of this layer advertised under another media type."""
        return replace(self, media_type=media_type)  # type: ignore[type-var]

    def descriptor(self) -> Descriptor:
        """Manifest descriptor for this layer."""
        return Descriptor(
            media_type=self.media_type, size=self.size, digest=self.digest
        )


@dataclass(frozen=True)
class StaticLayer(Layer):
    """A layer whose compressed bytes are held in memory."""

    blob: bytes = field(repr=False)
    layer_digest: str
    layer_diff_id: str
    media_type: str = DOCKER_LAYER

    @classmethod
    def from_bytes(cls, blob: bytes, media_type: str = DOCKER_LAYER) -> StaticLayer:
        """Create a layer from a gzip-compressed tar blob.

        Raises:
            ImageError: If the blob is not valid gzip.
        """
        try:
            uncompressed = gzip.decompress(blob)
        except (OSError, EOFError, zlib.error) as e:
            raise ImageError(
                f"layer blob is not valid gzip: {e}", code="invalid_layer"
            ) from e
        return cls(
            blob=blob,
            layer_digest=sha256_digest(blob),
            layer_diff_id=sha256_digest(uncompressed),
            media_type=media_type,
        )

    @property
    def digest(self) -> str:
        return self.layer_digest

    @property
    def diff_id(self) -> str:
        return self.layer_diff_id

    @property
    def size(self) -> int:
        return len(self.blob)

    def compressed(self) -> bytes:
        return self.blob


@dataclass(frozen=True)
class RemoteLayer(Layer):
    """A layer that lives in a registry and is fetched on demand.

    Attributes:
        layer_descriptor: Descriptor from the source manifest.
        layer_diff_id: Diff ID from the source config.
        registry: Registry host the blob lives on.
        repository: Repository the blob lives in.
        fetch: Returns the compressed blob.
    """

    layer_descriptor: Descriptor
    layer_diff_id: str
    registry: str
    repository: str
    fetch: Callable[[], bytes] = field(repr=False, compare=False)
    media_type: str = DOCKER_LAYER

    @property
    def digest(self) -> str:
        return self.layer_descriptor.digest

    @property
    def diff_id(self) -> str:
        return self.layer_diff_id

    @property
    def size(self) -> int:
        return self.layer_descriptor.size

    def compressed(self) -> bytes:
        return self.fetch()


__all__ = [
    "ImageError",
    "Layer",
    "RemoteLayer",
    "StaticLayer",
    "sha256_digest",
]
