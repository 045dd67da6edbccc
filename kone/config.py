"""Configuration settings for kone.

Uses pydantic-settings for config parsing from environment variables,
an optional .ko.yaml file, and defaults. Configuration precedence:
CLI flags > env vars > .ko.yaml > defaults.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import AliasChoices, Field
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

# Name of the per-project config file, searched for in KO_CONFIG_PATH and ./
CONFIG_FILENAMES = (".ko.yaml", ".ko.yml")

# Base image used when neither .ko.yaml nor package.json name one
DEFAULT_BASE_IMAGE = "node:lts-slim"

# Repository value that selects the local Docker daemon
LOCAL_REPO = "ko.local"


class ConfigurationError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""

    def __init__(self, message: str, code: str = "configuration_error") -> None:
        super().__init__(message)
        self.code = code


def _config_search_paths() -> list[Path]:
    """Return directories searched for .ko.yaml, in priority order."""
    paths: list[Path] = []
    override = os.environ.get("KO_CONFIG_PATH")
    if override:
        paths.append(Path(override))
    paths.append(Path.cwd())
    return paths


def load_ko_config(search_paths: list[Path] | None = None) -> dict[str, Any]:
    """Load the first .ko.yaml found in the search paths.

    Args:
        search_paths: Directories to search. Defaults to KO_CONFIG_PATH then ./.

    Returns:
        Parsed mapping, or an empty dict when no config file exists.

    Raises:
        ConfigurationError: If a config file exists but cannot be parsed.
    """
    if search_paths is None:
        search_paths = _config_search_paths()

    for directory in search_paths:
        for filename in CONFIG_FILENAMES:
            path = directory / filename
            if not path.is_file():
                continue
            try:
                with path.open(encoding="utf-8") as f:
                    data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                raise ConfigurationError(
                    f"error reading config file {path}: {e}",
                    code="config_read_error",
                ) from e
            if data is None:
                return {}
            if not isinstance(data, dict):
                raise ConfigurationError(
                    f"Expected a YAML mapping in {path}, got {type(data).__name__}",
                    code="config_read_error",
                )
            return data
    return {}


def _to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


class KoConfigSettingsSource(PydanticBaseSettingsSource):
    """Settings source backed by .ko.yaml (camelCase keys)."""

    def __init__(self, settings_cls: type[BaseSettings]) -> None:
        super().__init__(settings_cls)
        self._data = load_ko_config()

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        value = self._data.get(_to_camel(field_name), self._data.get(field_name))
        return value, field_name, False

    def __call__(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for field_name, field in self.settings_cls.model_fields.items():
            value, key, _ = self.get_field_value(field, field_name)
            if value is not None:
                values[key] = value
        return values


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the KO_ prefix
    (SOURCE_DATE_EPOCH is read unprefixed) and from .ko.yaml.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="KO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Destinations
    docker_repo: str | None = Field(
        default=None,
        description="Repository prefix images are published under (KO_DOCKER_REPO)",
    )
    default_base_image: str = Field(
        default=DEFAULT_BASE_IMAGE,
        description="Base image used when package.json does not override it",
    )
    platform: str = Field(
        default="linux/amd64",
        description="Platform selected from multi-platform base images",
    )
    insecure_registry: bool = Field(
        default=False,
        description="Talk plain HTTP to registries",
    )

    # Reproducibility
    source_date_epoch: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SOURCE_DATE_EPOCH", "source_date_epoch"),
        description="Fixed image creation time, seconds since the epoch",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    max_concurrent_builds: int = Field(
        default=2,
        ge=1,
        le=32,
        description="Maximum concurrent builds during publish",
    )
    registry_timeout: int = Field(
        default=300,
        ge=1,
        description="Timeout for registry requests (seconds)",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            KoConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @property
    def is_local(self) -> bool:
        """True when KO_DOCKER_REPO selects the local Docker daemon."""
        return self.docker_repo == LOCAL_REPO


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment and .ko.yaml.
    """
    return Settings()


def get_creation_time(settings: Settings | None = None) -> datetime | None:
    """Return the fixed image creation time, if one is configured.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        Timezone-aware UTC datetime, or None when SOURCE_DATE_EPOCH is unset.

    Raises:
        ConfigurationError: If SOURCE_DATE_EPOCH is not an integer.
    """
    if settings is None:
        settings = get_settings()
    epoch = settings.source_date_epoch
    if not epoch:
        return None
    try:
        seconds = int(epoch)
    except ValueError as e:
        raise ConfigurationError(
            "the environment variable SOURCE_DATE_EPOCH should be the number of "
            f"seconds since January 1st 1970, 00:00 UTC, got: {epoch!r}",
            code="invalid_source_date_epoch",
        ) from e
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "DEFAULT_BASE_IMAGE",
    "LOCAL_REPO",
    "ConfigurationError",
    "KoConfigSettingsSource",
    "Settings",
    "get_creation_time",
    "get_settings",
    "load_ko_config",
    "print_settings_json",
]
