"""Translates a torrent's server-side location into local source and destination paths.

A server reports where it saved a torrent from its own point of view
(`save_path`). That directory is usually reachable from this machine under a
different root, so the configured `path_prefix` is stripped from the save path
and the remainder is re-rooted under `root_path`:

    source      = root_path / (save_path - path_prefix) / name
    destination = categories[category] / name

Everything here is pure: no filesystem access.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, TYPE_CHECKING

from .utils import PathPrefixMismatch, UnsafeTorrentName

if TYPE_CHECKING:
    from .clients.base import TorrentRecord
    from .config_manager import ServerProfile


@dataclass(frozen=True)
class RelocationPlan:
    """Where a torrent's data is now and where it should go."""
    source: Path
    destination: Path


def _check_name(name: str) -> None:
    if name in ('', '.', '..') or os.sep in name or (os.altsep and os.altsep in name):
        raise UnsafeTorrentName(name)


def compute_source(save_path: str, name: str, root_path: Optional[str] = None, path_prefix: Optional[str] = None) -> Path:
    """Computes the local path of a torrent's data.

    Args:
        save_path: The directory the server reports the torrent was saved in.
        name: The torrent's file or top-level directory name.
        root_path: Local directory the stripped save path is joined onto.
            Defaults to the current directory.
        path_prefix: Leading part of `save_path` to remove first. Compared
            component by component, so '/data' is not a prefix of '/database'.

    Returns:
        The local source path.

    Raises:
        PathPrefixMismatch: If `path_prefix` is set and is not a prefix of `save_path`.
        UnsafeTorrentName: If `name` is not a single usable path component.
    """
    _check_name(name)
    relative = Path(save_path)
    if path_prefix:
        try:
            relative = relative.relative_to(path_prefix)
        except ValueError:
            raise PathPrefixMismatch(save_path, path_prefix) from None
    return Path(root_path or '') / relative / name


def compute_destination(category: str, name: str, categories: Mapping[str, str]) -> Optional[Path]:
    """Computes where a torrent's data should be moved, if anywhere.

    Returns:
        `categories[category] / name`, or None when the category is empty or
        has no destination. None means "leave this torrent alone".

    Raises:
        UnsafeTorrentName: If a destination exists and `name` is not a single
            usable path component.
    """
    if not category:
        return None
    dest_dir = categories.get(category)
    if not dest_dir:
        return None
    _check_name(name)
    return Path(dest_dir) / name


def plan_relocation(profile: "ServerProfile", torrent: "TorrentRecord") -> Optional[RelocationPlan]:
    """Builds the relocation plan for one torrent of one server.

    The source is only computed once the category is known to map somewhere,
    so an unmapped torrent can never fail on its path prefix.
    """
    destination = compute_destination(torrent.category, torrent.name, profile.categories)
    if destination is None:
        return None
    source = compute_source(torrent.save_path, torrent.name, profile.root_path, profile.path_prefix)
    return RelocationPlan(source=source, destination=destination)
