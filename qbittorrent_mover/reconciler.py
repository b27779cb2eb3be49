"""Runs one server's share of a polling cycle.

For a single server: check it is online, list its completed torrents, and move
each torrent that has a category destination, then remove it from the server.
Every torrent is handled in its own worker; a failure is logged and recorded
against that torrent and never stops its siblings.
"""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .clients.base import TorrentClient, TorrentRecord
from .clients.qbittorrent import QBittorrentClient
from .config_manager import DEFAULT_MAX_PARALLEL_MOVES, ServerProfile
from .path_mapper import plan_relocation
from .relocator import relocate
from .utils import (
    DecodeError, MoverError, PartialMove, PathMappingError, RelocateError,
    RemoteDeleteFailed, ServerOffline, TransportError
)

ClientFactory = Callable[[ServerProfile], TorrentClient]


@dataclass(frozen=True)
class ReconcileFailure:
    """A non-fatal failure recorded during a cycle.

    Attributes:
        server: Name of the server the failure belongs to.
        torrent: Name of the torrent, or None for server-level failures.
        error: The exception that was caught.
    """
    server: str
    torrent: Optional[str]
    error: Exception

    def __str__(self) -> str:
        where = f"[{self.server}]" if self.torrent is None else f"[{self.server}] '{self.torrent}'"
        return f"{where} {type(self.error).__name__}: {self.error}"


@dataclass
class ServerResult:
    """What happened to one server during one cycle."""
    server: str
    online: bool = False
    relocated: int = 0
    skipped: int = 0
    failures: List[ReconcileFailure] = field(default_factory=list)


class ServerReconciler:
    """Moves the completed torrents of one server at a time.

    Args:
        client_factory: Builds a client for a profile, `QBittorrentClient` by
            default. A new client is built for the server checks and for
            every torrent worker, so no client is shared between threads.
        max_parallel_moves: Upper bound on torrents handled at once per server.
        dry_run: Log what would be moved and deleted without doing it.
    """

    def __init__(self, client_factory: Optional[ClientFactory] = None,
                 max_parallel_moves: int = DEFAULT_MAX_PARALLEL_MOVES, dry_run: bool = False):
        self.client_factory = client_factory or QBittorrentClient
        self.max_parallel_moves = max(1, max_parallel_moves)
        self.dry_run = dry_run

    def reconcile(self, profile: ServerProfile) -> ServerResult:
        """Runs the check, list and move sequence for one server.

        Never raises for expected failures: an unreachable or offline server,
        an unusable torrent list, and every per-torrent failure end up in the
        returned result's `failures`.
        """
        result = ServerResult(server=profile.name)
        client = self.client_factory(profile)

        try:
            online = client.is_online()
        except TransportError as e:
            logging.warning(f"STATE: [{profile.name}] Server unreachable, skipping this cycle: {e}")
            result.failures.append(ReconcileFailure(profile.name, None, e))
            return result
        if not online:
            logging.warning(f"STATE: [{profile.name}] Server is offline, skipping this cycle.")
            result.failures.append(ReconcileFailure(
                profile.name, None, ServerOffline(f"{profile.qbit_url} did not answer its version check")
            ))
            return result
        result.online = True
        logging.info(f"STATE: [{profile.name}] Server is online.")

        try:
            torrents = client.list_completed()
        except (TransportError, DecodeError) as e:
            logging.error(f"[{profile.name}] Could not get completed torrents, skipping this cycle: {e}")
            result.failures.append(ReconcileFailure(profile.name, None, e))
            return result

        logging.info(f"[{profile.name}] Found {len(torrents)} completed torrent(s).")
        if not torrents:
            return result

        workers = min(self.max_parallel_moves, len(torrents))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"Move-{profile.name}") as executor:
            futures = {
                executor.submit(self._process_torrent, profile, torrent): torrent
                for torrent in torrents
            }
            for future in as_completed(futures):
                torrent = futures[future]
                try:
                    status, error = future.result()
                except MoverError as e:
                    # Already logged by the worker.
                    result.failures.append(ReconcileFailure(profile.name, torrent.name, e))
                    continue
                except Exception as e:
                    logging.error(f"An exception was thrown for torrent '{torrent.name}' on [{profile.name}]: {e}", exc_info=True)
                    result.failures.append(ReconcileFailure(profile.name, torrent.name, e))
                    continue

                if status == "relocated":
                    result.relocated += 1
                else:
                    result.skipped += 1
                if error is not None:
                    result.failures.append(ReconcileFailure(profile.name, torrent.name, error))

        return result

    def _process_torrent(self, profile: ServerProfile, torrent: TorrentRecord) -> Tuple[str, Optional[MoverError]]:
        """Plans, moves and deletes a single torrent.

        Returns:
            A (status, error) pair. Status is "relocated", "skipped" or
            "dry_run". `error` is set when the data was moved but the server
            entry could not be removed.

        Raises:
            PathMappingError: If the torrent's paths cannot be computed.
            RelocateError: If the move failed. The server entry is kept.
        """
        label = f"[{profile.name}] '{torrent.name}'"
        try:
            plan = plan_relocation(profile, torrent)
        except PathMappingError as e:
            logging.error(f"Skipped {label}: {e}")
            raise

        if plan is None:
            logging.debug(f"Skipped {label}: category '{torrent.category}' has no destination.")
            return "skipped", None

        if self.dry_run:
            logging.info(f"[DRY RUN] Would move {label} from '{plan.source}' to '{plan.destination}' and remove torrent {torrent.hash}.")
            return "dry_run", None

        try:
            relocate(plan.source, plan.destination)
        except PartialMove as e:
            logging.warning(f"MANUAL CLEANUP REQUIRED for {label}: {e}. The torrent was left on the server.")
            raise
        except RelocateError as e:
            logging.error(f"Failed to move {label}: {e}")
            raise
        logging.info(f"Moved {label} to '{plan.destination}'.")

        try:
            self.client_factory(profile).delete_torrent(torrent.hash)
        except TransportError as e:
            logging.error(
                f"Moved {label} but could not remove torrent {torrent.hash} from the server: {e}. "
                "The server will keep listing it until it is removed by hand."
            )
            error = RemoteDeleteFailed(f"Torrent {torrent.hash} was moved but is still on the server: {e}")
            error.__cause__ = e
            return "relocated", error
        logging.info(f"Removed torrent {torrent.hash} from [{profile.name}].")
        return "relocated", None
