"""Manages process-level concerns: log handlers and shutdown signals.

- Console logging through `rich` (or a plain stream handler in simple mode).
- A size-rotated log file, configured from `[SETTINGS]`.
- SIGINT/SIGTERM handlers that ask the scheduler loop to stop after the
  current cycle.
"""
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.logging import RichHandler

from .utils import parse_size

if TYPE_CHECKING:
    from .scheduler import SchedulerLoop

MAX_ARCHIVED_LOGS = 1
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
NOISY_LOGGERS = ('qbittorrentapi', 'urllib3')


def setup_console_logging(simple: bool, debug: bool) -> logging.Handler:
    """Configures the root logger with a console handler.

    Args:
        simple: Use a plain `StreamHandler` on stdout instead of `RichHandler`.
            Recommended under `screen`, `tmux` or a service manager.
        debug: If `True`, sets the logging level to `DEBUG`, otherwise `INFO`.

    Returns:
        The handler that was installed.
    """
    logger = logging.getLogger()
    log_level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(log_level)

    if logger.hasHandlers():
        logger.handlers.clear()

    if simple:
        handler: logging.Handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    else:
        handler = RichHandler(level=log_level, show_path=False, rich_tracebacks=True, markup=False, console=Console(stderr=True))
        handler.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handler


def setup_logging(log_file: str, max_log_file_size: str, debug: bool = False) -> RotatingFileHandler:
    """Adds a size-rotated file handler to the root logger.

    One archived file (`<log_file>.1`) is kept next to the active one.

    Args:
        log_file: Path of the log file. Its directory is created if needed.
        max_log_file_size: Size at which the file is rotated, e.g. '10M'.
        debug: If `True`, the file also receives `DEBUG` records.

    Returns:
        The installed handler.

    Raises:
        ValueError: If `max_log_file_size` cannot be parsed.
        OSError: If the log file cannot be opened.
    """
    max_bytes = parse_size(max_log_file_size)
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=MAX_ARCHIVED_LOGS, encoding='utf-8')
    file_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    logging.getLogger().addHandler(file_handler)
    logging.info(f"--- qBittorrent Mover file logging started ({log_path}) ---")
    return file_handler


def install_signal_handlers(loop: "SchedulerLoop") -> None:
    """Makes SIGINT and SIGTERM request a clean shutdown of `loop`.

    The first signal lets the running cycle finish. A second SIGINT raises
    `KeyboardInterrupt` as usual, for when waiting is not an option.
    Must be called from the main thread.
    """
    def handle_shutdown(signum, frame):
        name = signal.Signals(signum).name
        if loop.shutdown_requested:
            logging.warning(f"Received {name} again.")
            return
        logging.warning(f"Received {name}. Finishing the current cycle before exiting (press Ctrl+C again to force).")
        loop.request_shutdown()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)
