#!/usr/bin/env python3
# qBittorrent Mover
#
# Polls qBittorrent servers for completed torrents, moves their data into the
# directory configured for their category and removes them from the server.
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import argcomplete

from . import __version__
from .config_manager import ConfigValidator, load_config, parse_settings, update_config
from .orchestrator import FleetOrchestrator
from .reconciler import ServerReconciler
from .scheduler import SchedulerLoop
from .system_manager import install_signal_handlers, setup_console_logging, setup_logging
from .utils import ConfigError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='qbittorrent-mover',
        description="Move completed qBittorrent torrents into per-category directories.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('--config', default='config.ini', help='Path to the configuration file.')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging.')
    parser.add_argument('--simple', action='store_true', help='Plain console logging instead of rich output. Recommended for services, `screen` or `tmux`.')
    parser.add_argument('--dry-run', action='store_true', help='Log what would be moved and removed without changing anything.')
    parser.add_argument('--once', action='store_true', help='Run a single cycle and exit.')
    parser.add_argument('--check-config', action='store_true', help='Validate the configuration file and exit.')
    parser.add_argument('--version', action='store_true', help="Show program's version and config file path, then exit.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """The main entry point for the application.

    This function is responsible for:
    -   Parsing command-line arguments.
    -   Setting up console logging, then file logging once the configuration
        is known.
    -   Creating, updating, loading and validating the configuration.
    -   Running the scheduler loop until SIGINT/SIGTERM (or one cycle with
        `--once`).

    Returns:
        0 on a clean exit, 1 if startup failed.
    """
    parser = build_parser()
    argcomplete.autocomplete(parser)
    args = parser.parse_args(argv)

    if args.version:
        print(f"{Path(sys.argv[0]).name} {__version__}")
        print(f"Configuration file: {args.config}")
        return 0

    setup_console_logging(args.simple, args.debug)
    logging.info(f"--- qBittorrent Mover {__version__} started ---")
    logging.info(f"Using configuration file: {args.config}")

    if args.check_config:
        logging.info("--- Running Configuration Check ---")
        config = load_config(args.config)
        if ConfigValidator(config).validate():
            logging.info("SUCCESS: Configuration file appears to be valid.")
            return 0
        logging.error("FAILURE: Configuration file has errors.")
        return 1

    update_config(args.config)
    config = load_config(args.config)
    if not ConfigValidator(config).validate():
        logging.error("FATAL: Configuration file has errors. Fix them and restart.")
        return 1

    try:
        settings = parse_settings(config)
        setup_logging(settings.log_file, settings.max_log_file_size, args.debug)
    except ConfigError as e:
        logging.error(f"FATAL: {e}")
        return 1
    except (OSError, ValueError) as e:
        logging.error(f"FATAL: Could not open log file: {e}")
        return 1

    if args.dry_run:
        logging.warning("!!! DRY RUN MODE ENABLED. NO FILES WILL BE MOVED AND NO TORRENTS REMOVED. !!!")
    logging.info(f"Watching {len(settings.servers)} server(s) every {settings.cycle_delay}s.")

    reconciler = ServerReconciler(max_parallel_moves=settings.max_parallel_moves, dry_run=args.dry_run)
    loop = SchedulerLoop(FleetOrchestrator(reconciler), lambda: settings.servers, settings.cycle_delay)
    install_signal_handlers(loop)
    try:
        loop.run(max_cycles=1 if args.once else None)
    except KeyboardInterrupt:
        logging.warning("Process interrupted by user. Shutting down.")
    logging.info("--- qBittorrent Mover finished ---")
    return 0


if __name__ == "__main__":
    sys.exit(main())
