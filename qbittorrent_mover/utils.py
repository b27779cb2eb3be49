"""Provides utility functions and custom exceptions for the application.

This module contains the exception hierarchy shared by every part of the
qbittorrent_mover package, plus small parsing helpers.

Every error raised while a cycle is running derives from `MoverError`. They are
all soft: the reconciler catches them, logs them and records them against the
torrent or server they belong to. Only `ConfigError` is fatal, and only at
startup.

Functions:
    parse_size: Converts a human-readable size such as '10M' into bytes.
"""
from typing import Optional


class MoverError(Exception):
    """Base class for all errors raised by qbittorrent_mover."""
    pass


class ConfigError(MoverError):
    """Raised when the configuration cannot be parsed into usable settings."""
    pass


# --- Remote client errors ---

class TransportError(MoverError):
    """A request to a qBittorrent server failed before a usable answer arrived.

    Covers connection failures, timeouts, authentication failures and HTTP
    error statuses on endpoints where a success is required.
    """
    pass


class DecodeError(MoverError):
    """A qBittorrent server answered with a body that does not match the expected shape."""
    pass


class ServerOffline(MoverError):
    """The version endpoint answered, but not with a success status."""
    pass


class RemoteDeleteFailed(MoverError):
    """The torrent data was moved but the server could not be told to forget the torrent.

    The server keeps listing the entry until it is removed by hand; the next
    cycle will fail to find its source and log it again.
    """
    pass


# --- Path mapping errors ---

class PathMappingError(MoverError):
    """Base class for failures translating a remote save path into a local path."""
    pass


class PathPrefixMismatch(PathMappingError):
    """The configured path prefix is not a prefix of the torrent's save path."""

    def __init__(self, save_path: str, path_prefix: str):
        super().__init__(f"Save path '{save_path}' does not start with path prefix '{path_prefix}'")
        self.save_path = save_path
        self.path_prefix = path_prefix


class UnsafeTorrentName(PathMappingError):
    """The torrent name cannot be used as a single path component."""

    def __init__(self, name: str):
        super().__init__(f"Torrent name {name!r} is not a usable file or directory name")
        self.name = name


# --- Relocation errors ---

class RelocateError(MoverError):
    """Base class for failures while moving torrent data on the local filesystem.

    Attributes:
        source: The path being moved.
        destination: The path it was being moved to, when known.
    """

    def __init__(self, message: str, source: object = None, destination: Optional[object] = None):
        super().__init__(message)
        self.source = source
        self.destination = destination


class SourceNotFound(RelocateError):
    """Nothing exists at the source path."""
    pass


class UnsupportedSourceType(RelocateError):
    """The source is neither a regular file nor a directory (special file, broken or looping symlink)."""
    pass


class DestinationExists(RelocateError):
    """Something already exists at the destination path. Moves never merge or overwrite."""
    pass


class CopyFailed(RelocateError):
    """Copying to the destination failed. The partial copy was removed and the source is intact."""
    pass


class PartialMove(RelocateError):
    """The copy completed but the source could not be deleted.

    The data now exists in both places. The source must be cleaned up by hand
    and the remote torrent is left alone, because which copy is authoritative
    is ambiguous.
    """
    pass


_SIZE_UNITS = {
    'K': 1024,
    'M': 1024**2,
    'G': 1024**3,
}


def parse_size(size: str) -> int:
    """Parses a size string such as '10M', '1G' or '1048576' into bytes.

    Args:
        size: A whole number, optionally followed by a K, M or G suffix
            (binary multiples, case-insensitive).

    Returns:
        The size in bytes.

    Raises:
        ValueError: If the string is empty or the number is not a
            non-negative integer.
    """
    s = size.strip()
    if not s:
        raise ValueError("Size string is empty")
    multiplier = _SIZE_UNITS.get(s[-1].upper())
    if multiplier is not None:
        s = s[:-1].strip()
    else:
        multiplier = 1
    if not s.isdigit():
        raise ValueError(f"Invalid size value: '{size}'")
    return int(s) * multiplier
