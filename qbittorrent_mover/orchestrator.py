"""Runs one polling cycle across every configured server at once."""
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import List, Sequence

from .config_manager import ServerProfile
from .reconciler import ReconcileFailure, ServerReconciler, ServerResult


@dataclass
class CycleResult:
    """Aggregate outcome of one cycle, used for reporting only."""
    servers_processed: int = 0
    servers_online: int = 0
    relocated: int = 0
    skipped: int = 0
    failures: List[ReconcileFailure] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.failures)

    def add(self, server_result: ServerResult) -> None:
        if server_result.online:
            self.servers_online += 1
        self.relocated += server_result.relocated
        self.skipped += server_result.skipped
        self.failures.extend(server_result.failures)

    def summary(self) -> str:
        return (f"{self.servers_processed} server(s) processed ({self.servers_online} online), "
                f"{self.relocated} torrent(s) moved, {self.skipped} skipped, {self.error_count} error(s)")


class FleetOrchestrator:
    """Reconciles all servers concurrently and collects every failure.

    A cycle in which some servers fail is a normal outcome; `run_cycle` never
    raises because of a server.
    """

    def __init__(self, reconciler: ServerReconciler):
        self.reconciler = reconciler

    def run_cycle(self, profiles: Sequence[ServerProfile]) -> CycleResult:
        result = CycleResult()
        if not profiles:
            logging.warning("No servers configured. Nothing to do.")
            return result

        with ThreadPoolExecutor(max_workers=len(profiles), thread_name_prefix='Server') as executor:
            futures = {executor.submit(self.reconciler.reconcile, profile): profile for profile in profiles}
            for future in as_completed(futures):
                profile = futures[future]
                result.servers_processed += 1
                try:
                    result.add(future.result())
                except Exception as e:
                    logging.error(f"An exception was thrown while processing server [{profile.name}]: {e}", exc_info=True)
                    result.failures.append(ReconcileFailure(profile.name, None, e))
        return result
