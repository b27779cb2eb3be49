"""Moves a completed torrent's data to its destination on the local filesystem.

A move is always copy-then-delete, even on the same filesystem, so that the
source is only removed once a complete copy exists. Nothing is ever merged into
or written over an existing destination.
"""
import logging
import os
import shutil
import stat
from pathlib import Path
from typing import Union

from .utils import (
    CopyFailed, DestinationExists, PartialMove, SourceNotFound, UnsupportedSourceType
)

PathLike = Union[str, Path]


def relocate(source: PathLike, destination: PathLike) -> None:
    """Moves a file or directory tree from `source` to `destination`.

    Regular files are copied with their metadata and then unlinked. Directories
    are copied recursively (symlinks inside the tree stay symlinks) and then
    removed recursively. A `source` that is a symlink has its target's content
    copied and then only the link itself removed. Missing parent directories
    of `destination` are created.

    The destination entry is created exclusively before anything is copied
    into it, so an entry that appears after the existence check is reported
    as `DestinationExists` and left alone.

    Args:
        source: The file or directory to move. Symlinks are followed.
        destination: The full target path, which must not exist yet.

    Raises:
        SourceNotFound: If there is no directory entry at `source`.
        UnsupportedSourceType: If `source` does not resolve to a regular file or
            directory (special file, dangling symlink, symlink loop).
        DestinationExists: If anything exists at `destination`.
        CopyFailed: If copying fails. The partial copy is removed and the
            source is left untouched.
        PartialMove: If the copy succeeded but the source could not be removed.
    """
    source = Path(source)
    destination = Path(destination)

    if not os.path.lexists(source):
        raise SourceNotFound(f"Source path does not exist: '{source}'", source, destination)
    try:
        mode = os.stat(source).st_mode
    except OSError as e:
        raise UnsupportedSourceType(f"Source path cannot be resolved: '{source}' ({e})", source, destination) from e
    is_dir = stat.S_ISDIR(mode)
    if not is_dir and not stat.S_ISREG(mode):
        raise UnsupportedSourceType(f"Source path is not a file or directory: '{source}'", source, destination)

    if os.path.lexists(destination):
        raise DestinationExists(f"Destination path already exists: '{destination}'", source, destination)

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        if is_dir:
            destination.mkdir()
        else:
            destination.touch(exist_ok=False)
    except FileExistsError:
        raise DestinationExists(f"Destination path already exists: '{destination}'", source, destination) from None
    except OSError as e:
        raise CopyFailed(f"Failed to create '{destination}': {e}", source, destination) from e

    try:
        if is_dir:
            shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
        else:
            shutil.copy2(source, destination)
    except (OSError, shutil.Error) as e:
        _remove_partial_copy(destination)
        raise CopyFailed(f"Failed to copy '{source}' to '{destination}': {e}", source, destination) from e

    try:
        if is_dir and not source.is_symlink():
            shutil.rmtree(source)
        else:
            source.unlink()
    except OSError as e:
        raise PartialMove(
            f"Copied '{source}' to '{destination}' but could not remove the source: {e}",
            source, destination
        ) from e
    logging.debug(f"Relocated '{source}' -> '{destination}'")


def _remove_partial_copy(destination: Path) -> None:
    if not os.path.lexists(destination):
        return
    try:
        if destination.is_dir() and not destination.is_symlink():
            shutil.rmtree(destination)
        else:
            destination.unlink()
    except OSError as e:
        logging.error(f"Could not remove partial copy at '{destination}': {e}")
