"""Deterministic layer archives from directory trees.

This module handles:
- Emitting directory headers for a destination root and its ancestors
- Walking a source tree in lexical order, parents before children
- Flattening symlinks into regular files
- Compressing without embedded file names or timestamps

Identical input trees always produce byte-identical archives: every entry
uses the same mode, owner and modification time regardless of the source
file's metadata or the umask it was created under.
"""

from __future__ import annotations

import errno
import gzip
import io
import logging
import os
import posixpath
import stat
import tarfile
from collections.abc import Iterator
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

# Mode used for every directory and file entry
LAYER_MODE = 0o555

# Fast compression; layers are compressed once and uploaded as-is
GZIP_LEVEL = 1


class ArchiveError(Exception):
    """Raised when a directory cannot be archived."""

    def __init__(self, message: str, code: str = "archive_error") -> None:
        super().__init__(message)
        self.code = code


def _dir_info(name: str) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = tarfile.DIRTYPE
    info.mode = LAYER_MODE
    return info


def _file_info(name: str, size: int) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = tarfile.REGTYPE
    info.mode = LAYER_MODE
    info.size = size
    return info


def ancestor_directories(dest_root: str) -> list[str]:
    """Return the ancestors of dest_root, outermost first.

    The filesystem root ('/') and the relative root ('.') are never included.

    Args:
        dest_root: Destination path inside the image (e.g. '/var/run/ko').

    Returns:
        List of ancestor paths, e.g. ['/var', '/var/run'].
    """
    parents = reversed(PurePosixPath(dest_root).parents)
    return [str(p) for p in parents if str(p) not in ("/", ".")]


def add_directories(tar: tarfile.TarFile, dest_root: str) -> None:
    """Write headers for dest_root's ancestors, then dest_root itself."""
    for directory in ancestor_directories(dest_root):
        tar.addfile(_dir_info(directory))
    tar.addfile(_dir_info(str(PurePosixPath(dest_root))))


def _sorted_entries(directory: Path) -> list[os.DirEntry[str]]:
    with os.scandir(directory) as it:
        return sorted(it, key=lambda e: e.name)


def iter_tree(source_dir: Path) -> Iterator[tuple[Path, bool]]:
    """Walk source_dir in lexical order.

    Entries of each directory are visited sorted by name; a real
    directory is yielded before anything beneath it. Symlinked
    directories are not descended into.

    Args:
        source_dir: Directory to walk.

    Yields:
        (path, is_directory) for every entry below source_dir.
    """
    pending = [iter(_sorted_entries(source_dir))]
    while pending:
        entry = next(pending[-1], None)
        if entry is None:
            pending.pop()
            continue
        is_dir = entry.is_dir(follow_symlinks=False)
        path = Path(entry.path)
        yield path, is_dir
        if is_dir:
            pending.append(iter(_sorted_entries(path)))


def _add_file(tar: tarfile.TarFile, path: Path, name: str) -> None:
    """Write path as a regular file entry, chasing symlinks.

    Raises:
        ArchiveError: If the file (or symlink target) cannot be archived.
    """
    try:
        st = path.stat()
    except FileNotFoundError as e:
        raise ArchiveError(
            f"Broken symlink {path}: target does not exist",
            code="broken_symlink",
        ) from e
    except OSError as e:
        if e.errno == errno.ELOOP:
            raise ArchiveError(
                f"Symlink loop detected at {path}",
                code="symlink_loop",
            ) from e
        raise

    if stat.S_ISDIR(st.st_mode):
        raise ArchiveError(
            f"Symlink {path} points to a directory, which cannot be flattened",
            code="symlink_to_directory",
        )
    if not stat.S_ISREG(st.st_mode):
        raise ArchiveError(
            f"Unsupported file type at {path}",
            code="unsupported_file_type",
        )

    with path.open("rb") as f:
        tar.addfile(_file_info(name, st.st_size), f)


def archive_directory(
    source_dir: Path | str,
    dest_root: str,
    missing_ok: bool = False,
) -> bytes:
    """Archive a directory tree as one gzip-compressed layer.

    Args:
        source_dir: Directory whose contents become the layer.
        dest_root: Absolute path the directory maps to inside the image.
        missing_ok: If True, a missing source_dir yields an archive holding
            only the dest_root directory headers.

    Returns:
        Gzip-compressed tar bytes.

    Raises:
        ArchiveError: If the source is missing (and not missing_ok), or any
            entry cannot be read.
    """
    source = Path(source_dir)

    if not source.exists():
        if not missing_ok:
            raise ArchiveError(
                f"Source directory not found: {source}",
                code="source_not_found",
            )
        logger.debug("Source %s absent, archiving %s headers only", source, dest_root)
        source_present = False
    elif not source.is_dir():
        raise ArchiveError(
            f"Source path is not a directory: {source}",
            code="source_not_dir",
        )
    else:
        source_present = True

    buf = io.BytesIO()
    entries = 0
    try:
        with tarfile.open(fileobj=buf, mode="w", format=tarfile.PAX_FORMAT) as tar:
            add_directories(tar, dest_root)

            if source_present:
                for path, is_dir in iter_tree(source):
                    rel_path = path.relative_to(source).as_posix()
                    name = posixpath.join(dest_root, rel_path)
                    if is_dir:
                        tar.addfile(_dir_info(name))
                    else:
                        _add_file(tar, path, name)
                    entries += 1
    except OSError as e:
        raise ArchiveError(
            f"Failed to archive {source}: {e}",
            code="read_error",
        ) from e

    logger.debug("Archived %s -> %s (%d entries)", source, dest_root, entries)
    return gzip.compress(buf.getvalue(), compresslevel=GZIP_LEVEL, mtime=0)


__all__ = [
    "GZIP_LEVEL",
    "LAYER_MODE",
    "ArchiveError",
    "add_directories",
    "ancestor_directories",
    "archive_directory",
    "iter_tree",
]
