"""Repeats the polling cycle until shutdown is requested.

Shutdown is cooperative. A request only prevents the next cycle from starting;
a cycle that is already running always finishes, so no torrent is left
half-copied.
"""
import logging
import threading
from enum import Enum
from typing import Callable, Optional, Sequence

from .config_manager import ServerProfile
from .orchestrator import CycleResult, FleetOrchestrator


class LoopState(Enum):
    """State of a `SchedulerLoop`. SHUTTING_DOWN is terminal."""
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


class SchedulerLoop:
    """Runs `FleetOrchestrator.run_cycle` on a fixed delay.

    Attributes:
        orchestrator: Runs one cycle over a list of servers.
        profiles: Called before every cycle to get the servers to process.
        cycle_delay: Seconds to wait between the end of one cycle and the start
            of the next.
        state: The current `LoopState`.
    """

    def __init__(self, orchestrator: FleetOrchestrator, profiles: Callable[[], Sequence[ServerProfile]],
                 cycle_delay: float, shutdown_event: Optional[threading.Event] = None):
        self.orchestrator = orchestrator
        self.profiles = profiles
        self.cycle_delay = cycle_delay
        self.state = LoopState.RUNNING
        self._shutdown_event = shutdown_event or threading.Event()

    def request_shutdown(self) -> None:
        """Asks the loop to stop. Safe to call from a signal handler or another thread."""
        self._shutdown_event.set()

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_event.is_set()

    def run(self, max_cycles: Optional[int] = None) -> int:
        """Runs cycles until shutdown is requested or `max_cycles` have run.

        Returns:
            The number of cycles that ran.
        """
        cycles = 0
        while self.state is LoopState.RUNNING:
            if self._shutdown_event.is_set():
                self.state = LoopState.SHUTTING_DOWN
                break

            cycles += 1
            logging.info(f"STATE: Starting cycle {cycles}...")
            try:
                result = self.orchestrator.run_cycle(list(self.profiles()))
            except Exception as e:
                logging.error(f"Cycle {cycles} failed unexpectedly: {e}", exc_info=True)
            else:
                self._log_result(cycles, result)

            if max_cycles is not None and cycles >= max_cycles:
                self.state = LoopState.SHUTTING_DOWN
                break
            if self._shutdown_event.wait(self.cycle_delay):
                self.state = LoopState.SHUTTING_DOWN

        if self._shutdown_event.is_set():
            logging.info("STATE: Received shutdown signal. Exiting...")
        return cycles

    @staticmethod
    def _log_result(cycle: int, result: CycleResult) -> None:
        if result.error_count:
            logging.warning(f"Cycle {cycle} finished with errors: {result.summary()}")
            for failure in result.failures:
                logging.debug(f"  {failure}")
        else:
            logging.info(f"Cycle {cycle} finished: {result.summary()}")
