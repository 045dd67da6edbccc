"""Pydantic models for image config files and manifests.

These mirror the JSON documents defined by the OCI image format and the
Docker image manifest v2 schema 2. Unknown keys are preserved so that a
base image's configuration survives a parse/serialize round trip.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

# Manifest media types
DOCKER_MANIFEST_SCHEMA2 = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"

# Config media types
DOCKER_CONFIG_JSON = "application/vnd.docker.container.image.v1+json"
OCI_CONFIG_JSON = "application/vnd.oci.image.config.v1+json"

# Layer media types
DOCKER_LAYER = "application/vnd.docker.image.rootfs.diff.tar.gzip"
OCI_LAYER = "application/vnd.oci.image.layer.v1.tar+gzip"

INDEX_MEDIA_TYPES = (DOCKER_MANIFEST_LIST, OCI_INDEX)
MANIFEST_MEDIA_TYPES = (DOCKER_MANIFEST_SCHEMA2, OCI_MANIFEST)


def format_time(value: datetime) -> str:
    """Format a datetime as RFC 3339 in UTC, as image configs expect."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


class ContainerConfig(BaseModel):
    """Run configuration of a container (the `config` object)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    user: str | None = Field(default=None, alias="User")
    exposed_ports: dict[str, dict] | None = Field(default=None, alias="ExposedPorts")
    env: list[str] | None = Field(default=None, alias="Env")
    entrypoint: list[str] | None = Field(default=None, alias="Entrypoint")
    cmd: list[str] | None = Field(default=None, alias="Cmd")
    volumes: dict[str, dict] | None = Field(default=None, alias="Volumes")
    working_dir: str | None = Field(default=None, alias="WorkingDir")
    labels: dict[str, str] | None = Field(default=None, alias="Labels")
    stop_signal: str | None = Field(default=None, alias="StopSignal")


class RootFS(BaseModel):
    """Ordered list of uncompressed layer digests."""

    model_config = ConfigDict(extra="allow")

    type: str = "layers"
    diff_ids: list[str] = Field(default_factory=list)


class History(BaseModel):
    """One entry of an image's build history."""

    model_config = ConfigDict(extra="allow")

    created: str | None = None
    created_by: str | None = None
    author: str | None = None
    comment: str | None = None
    empty_layer: bool | None = None


class ConfigFile(BaseModel):
    """Image configuration document.

    Times are kept as the RFC 3339 strings found in the document so that
    registries' nanosecond timestamps survive untouched.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    architecture: str | None = None
    os: str | None = None
    variant: str | None = None
    created: str | None = None
    author: str | None = None
    container: str | None = None
    docker_version: str | None = None
    config: ContainerConfig = Field(default_factory=ContainerConfig)
    container_config: ContainerConfig | None = None
    rootfs: RootFS = Field(default_factory=RootFS)
    history: list[History] = Field(default_factory=list)

    def to_json_bytes(self) -> bytes:
        """Serialize to compact JSON with document key names."""
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


class Platform(BaseModel):
    """Platform an image in an index targets."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    architecture: str
    os: str
    variant: str | None = None
    os_version: str | None = Field(default=None, alias="os.version")

    @classmethod
    def parse(cls, value: str) -> Platform:
        """Parse 'os/arch[/variant]'."""
        parts = value.split("/")
        if len(parts) < 2 or not all(parts):
            raise ValueError(f"invalid platform {value!r}, want os/arch[/variant]")
        return cls(
            os=parts[0],
            architecture=parts[1],
            variant=parts[2] if len(parts) > 2 else None,
        )

    def matches(self, other: Platform) -> bool:
        """True when other satisfies this platform (variant optional)."""
        if self.os != other.os or self.architecture != other.architecture:
            return False
        return self.variant is None or self.variant == other.variant


class Descriptor(BaseModel):
    """Content descriptor referencing a blob or manifest."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    media_type: str = Field(alias="mediaType")
    size: int
    digest: str
    urls: list[str] | None = None
    annotations: dict[str, str] | None = None
    platform: Platform | None = None


class Manifest(BaseModel):
    """Single-platform image manifest."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str | None = Field(default=None, alias="mediaType")
    config: Descriptor
    layers: list[Descriptor] = Field(default_factory=list)
    annotations: dict[str, str] | None = None

    def to_json_bytes(self) -> bytes:
        """Serialize to compact JSON with document key names."""
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")


class IndexManifest(BaseModel):
    """Multi-platform manifest list or OCI index."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    schema_version: int = Field(default=2, alias="schemaVersion")
    media_type: str | None = Field(default=None, alias="mediaType")
    manifests: list[Descriptor] = Field(default_factory=list)


__all__ = [
    "DOCKER_CONFIG_JSON",
    "DOCKER_LAYER",
    "DOCKER_MANIFEST_LIST",
    "DOCKER_MANIFEST_SCHEMA2",
    "INDEX_MEDIA_TYPES",
    "MANIFEST_MEDIA_TYPES",
    "OCI_CONFIG_JSON",
    "OCI_INDEX",
    "OCI_LAYER",
    "OCI_MANIFEST",
    "ConfigFile",
    "ContainerConfig",
    "Descriptor",
    "History",
    "IndexManifest",
    "Manifest",
    "Platform",
    "RootFS",
    "format_time",
]
