"""Container image model.

This module handles:
- Image config and manifest documents
- Static (in-memory) and remote (registry) layers
- Immutable images and the append/config/created-at mutations
- Docker-save tarball export
"""

from kone.images.image import (
    Addendum,
    Image,
    append_layers,
    created_at,
    with_config_file,
)
from kone.images.layer import ImageError, Layer, RemoteLayer, StaticLayer
from kone.images.models import ConfigFile, ContainerConfig, History, Manifest

__all__ = [
    "Addendum",
    "ConfigFile",
    "ContainerConfig",
    "History",
    "Image",
    "ImageError",
    "Layer",
    "Manifest",
    "RemoteLayer",
    "StaticLayer",
    "append_layers",
    "created_at",
    "with_config_file",
]
