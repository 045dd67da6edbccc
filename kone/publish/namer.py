"""Repository naming for published images.

A namer maps a package.json name onto the path component that follows
KO_DOCKER_REPO.
"""

from __future__ import annotations

import hashlib
import posixpath

from kone.types import Namer


def preserve_package_name(package_name: str) -> str:
    """Use the package name itself, minus any npm scope marker.

    '@scope/app' becomes 'scope/app'; registries only accept lowercase
    repository names.
    """
    return package_name.lstrip("@").lower()


def package_with_md5(package_name: str) -> str:
    """Use '<basename>-<md5 of the full name>'."""
    digest = hashlib.md5(package_name.encode("utf-8")).hexdigest()
    return f"{posixpath.basename(preserve_package_name(package_name))}-{digest}"


def make_namer(preserve: bool = True) -> Namer:
    """Return the namer selected by the --preserve-package-name option."""
    if preserve:
        return preserve_package_name
    return package_with_md5


__all__ = ["make_namer", "package_with_md5", "preserve_package_name"]
