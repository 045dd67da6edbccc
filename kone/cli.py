"""Thin CLI wrapper for kone.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import logging
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from kone import __version__
from kone.builds.archive import ArchiveError
from kone.builds.node import BuildConfigurationError
from kone.config import (
    ConfigurationError,
    Settings,
    get_settings,
    print_settings_json,
)
from kone.images.layer import ImageError
from kone.publish.default import PublishError
from kone.publish.service import (
    make_builder,
    make_client_pool,
    make_publisher,
    publish_images,
)
from kone.registry.client import RegistryError

app = typer.Typer(
    name="kone",
    help="kone - build and publish Node.js container images without a Dockerfile",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

# Errors reported as a one-line message instead of a traceback
KONE_ERRORS = (
    ArchiveError,
    BuildConfigurationError,
    ConfigurationError,
    ImageError,
    PublishError,
    RegistryError,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"kone version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def _load_settings(ctx: typer.Context) -> Settings:
    try:
        settings = get_settings()
    except (ConfigurationError, ValidationError) as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None
    verbose = bool(ctx.obj and ctx.obj.get("verbose"))
    configure_logging("DEBUG" if verbose else settings.log_level)
    return settings


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """kone - build and publish Node.js container images without a Dockerfile."""
    ctx.ensure_object(dict)["verbose"] = verbose


@app.command()
def config(
    ctx: typer.Context,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = _load_settings(ctx)
    if json_output:
        console.print(print_settings_json(settings))
        return

    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Images:[/bold]")
    console.print(f"  Docker repo:         {settings.docker_repo or '(unset)'}")
    console.print(f"  Default base image:  {settings.default_base_image}")
    console.print(f"  Platform:            {settings.platform}")
    console.print(f"  Insecure registry:   {settings.insecure_registry}")
    console.print(f"  SOURCE_DATE_EPOCH:   {settings.source_date_epoch or '(unset)'}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print(f"  Max builds:          {settings.max_concurrent_builds}")
    console.print(f"  Registry timeout:    {settings.registry_timeout}")


@app.command()
def publish(
    ctx: typer.Context,
    paths: Annotated[
        list[str],
        typer.Argument(help="App directories containing a package.json"),
    ],
    local: Annotated[
        bool,
        typer.Option(
            "--local",
            "-L",
            help="Load into the local Docker daemon (same as KO_DOCKER_REPO=ko.local)",
        ),
    ] = False,
    tags: Annotated[
        list[str] | None,
        typer.Option("--tag", "-t", help="Tag to publish (can be repeated)"),
    ] = None,
    tarball: Annotated[
        Path | None,
        typer.Option("--tarball", help="Write a docker-save tarball instead"),
    ] = None,
    preserve_package_name: Annotated[
        bool,
        typer.Option(
            "--preserve-package-name/--hash-package-name",
            help="Name repositories after the package, or basename plus MD5",
        ),
    ] = True,
    base_dir: Annotated[
        str,
        typer.Option("--base-dir", help="Directory the paths are relative to"),
    ] = ".",
    insecure_registry: Annotated[
        bool,
        typer.Option("--insecure-registry", help="Talk plain HTTP to registries"),
    ] = False,
    platform: Annotated[
        str | None,
        typer.Option("--platform", help="Base image platform (os/arch[/variant])"),
    ] = None,
    jobs: Annotated[
        int | None,
        typer.Option("--jobs", "-j", min=1, help="Maximum concurrent builds"),
    ] = None,
) -> None:
    """Build and publish container images from the given paths.

    Images go to ${KO_DOCKER_REPO}/<package name>. When KO_DOCKER_REPO is
    ko.local, it is the same as passing --local.
    """
    settings = _load_settings(ctx)
    overrides: dict[str, object] = {}
    if insecure_registry:
        overrides["insecure_registry"] = True
    if platform:
        overrides["platform"] = platform
    if jobs:
        overrides["max_concurrent_builds"] = jobs
    if overrides:
        settings = settings.model_copy(update=overrides)

    pool = make_client_pool(settings)
    try:
        builder = make_builder(settings, pool)
        publisher = make_publisher(
            settings,
            pool,
            local=local,
            tags=tags or ["latest"],
            tarball=tarball,
            preserve_package_name=preserve_package_name,
        )
        images = publish_images(
            paths,
            publisher,
            builder,
            base_dir=base_dir,
            max_workers=settings.max_concurrent_builds,
        )
        close = getattr(publisher, "close", None)
        if close is not None:
            close()
    except KONE_ERRORS as e:
        console.print(f"[red]Failed to publish images: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None
    finally:
        pool.close()

    for reference in images.values():
        console.print(reference, markup=False, highlight=False, soft_wrap=True)


if __name__ == "__main__":
    app()
