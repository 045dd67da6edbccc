"""Publish service module.

This module provides the high-level publish API:
- make_builder(): caching Node.js builder wired to the base image resolver
- make_publisher(): registry, daemon or tarball publisher from options
- publish_images(): validate, build and publish several apps concurrently
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from kone.builds.base import BaseImageResolver, ClientFactory
from kone.builds.caching import CachingBuilder, new_caching
from kone.builds.node import new_node_builder
from kone.config import (
    LOCAL_REPO,
    ConfigurationError,
    Settings,
    get_creation_time,
)
from kone.publish.daemon import DaemonPublisher
from kone.publish.default import DEFAULT_TAGS, PublishError, RegistryPublisher
from kone.publish.namer import make_namer
from kone.publish.tarball import TarballPublisher
from kone.registry.auth import Keychain
from kone.registry.client import ClientPool
from kone.registry.reference import InvalidReferenceError
from kone.types import BuildInterface, Publisher

logger = logging.getLogger(__name__)


def make_client_pool(settings: Settings) -> ClientPool:
    """Registry clients authenticated from the Docker CLI config."""
    return ClientPool(
        keychain=Keychain(),
        insecure=settings.insecure_registry,
        timeout=settings.registry_timeout,
    )


def make_builder(settings: Settings, client_factory: ClientFactory) -> CachingBuilder:
    """Create the caching builder used by publish.

    Args:
        settings: Effective settings.
        client_factory: Returns the registry client for a registry host.

    Returns:
        CachingBuilder around a NodeBuilder.

    Raises:
        ConfigurationError: If the default base image or SOURCE_DATE_EPOCH
            is invalid.
    """
    try:
        resolver = BaseImageResolver(
            settings.default_base_image,
            client_factory,
            platform=settings.platform,
        )
    except InvalidReferenceError as e:
        raise ConfigurationError(
            f"'defaultBaseImage': error parsing {settings.default_base_image!r} "
            f"as image reference: {e}",
            code="invalid_default_base_image",
        ) from e

    creation_time = get_creation_time(settings)
    return new_caching(new_node_builder(resolver.resolve, creation_time))


def make_publisher(
    settings: Settings,
    client_factory: ClientFactory,
    local: bool = False,
    tags: Sequence[str] = DEFAULT_TAGS,
    tarball: Path | None = None,
    preserve_package_name: bool = True,
) -> Publisher:
    """Select the publisher for the given options.

    A tarball path wins, then --local or KO_DOCKER_REPO=ko.local, then the
    registry named by KO_DOCKER_REPO.

    Raises:
        ConfigurationError: If a registry publisher is needed but
            KO_DOCKER_REPO is unset.
    """
    namer = make_namer(preserve_package_name)
    if not tags:
        tags = DEFAULT_TAGS

    if tarball is not None:
        return TarballPublisher(
            tarball, repo=settings.docker_repo or LOCAL_REPO, tags=tags, namer=namer
        )
    if local or settings.is_local:
        return DaemonPublisher(tags=tags, namer=namer)
    if not settings.docker_repo:
        raise ConfigurationError(
            "KO_DOCKER_REPO environment variable is unset",
            code="missing_docker_repo",
        )
    return RegistryPublisher(
        settings.docker_repo, tags=tags, namer=namer, client_factory=client_factory
    )


def publish_images(
    paths: Sequence[str],
    publisher: Publisher,
    builder: BuildInterface,
    base_dir: str = ".",
    max_workers: int = 2,
) -> dict[str, str]:
    """Build and publish the apps at paths.

    Every path is checked before anything is built, so an unsupported path
    fails the whole call up front.

    Args:
        paths: App directories relative to base_dir.
        publisher: Destination for the built images.
        builder: Builder (normally a CachingBuilder).
        base_dir: Directory the paths are relative to.
        max_workers: Maximum concurrent build-and-publish jobs.

    Returns:
        Mapping of path to published reference, in input order.

    Raises:
        PublishError: If a path is not a Node.js app.
        Exception: The first build or publish error, unchanged.
    """
    names: dict[str, str] = {}
    for path in paths:
        name = builder.is_supported_reference(base_dir, path)
        if name is None:
            raise PublishError(
                f"importpath {path!r} is not supported: "
                "no package.json with a non-empty name",
                code="unsupported_reference",
            )
        names[path] = name

    def build_and_publish(path: str) -> str:
        image = builder.build(base_dir, path)
        return publisher.publish(image, names[path])

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {path: pool.submit(build_and_publish, path) for path in names}
        return {path: future.result() for path, future in futures.items()}


__all__ = [
    "make_builder",
    "make_client_pool",
    "make_publisher",
    "publish_images",
]
