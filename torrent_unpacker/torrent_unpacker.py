#!/usr/bin/env python3
# PYTHON_ARGCOMPLETE_OK
"""Daemon that checks completed qBittorrent torrents for archives and unpacks them.

Progress is reported through each torrent's category: a completed torrent
without a category is checked and labelled 'Completed' (archives found) or
'NoArchive'. Setting a torrent to 'Unpack' extracts its archives into the
destination directory, moving it through 'Unpacking' to 'Unpacked' or 'Error'.
"""
import argparse
import configparser
import logging
import queue
import signal
import sys
from pathlib import Path
from typing import List, Optional

import argcomplete

from . import __version__
from .clients import get_client
from .config_manager import (
    DEFAULT_CONFIG_NAME, ConfigValidator, DaemonConfig, apply_path_overrides,
    load_config, update_config, write_default_config,
)
from .core_logic.dispatcher import Dispatcher
from .system_manager import LockFile, setup_logging
from .unpacker import ArchiveScanner, stop_all_processes
from .utils import NoExtractorsError, OperationCancelled, ScanError

RESULT_POLL_INTERVAL = 1.0
SHUTDOWN_TIMEOUT = 30.0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Checks completed qBittorrent torrents for archives and unpacks them on request.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument('--config', default=str(Path.cwd() / DEFAULT_CONFIG_NAME), help='Path to the configuration file.')
    parser.add_argument('--dest', metavar='PATH', help='Override the destination path from the configuration.')
    parser.add_argument('--temp', metavar='PATH', help='Override the temp path from the configuration.')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging.')
    parser.add_argument('--simple', action='store_true', help='Plain console logging instead of rich output. Recommended for `screen` or `tmux`.')
    parser.add_argument('--check-config', action='store_true', help='Validate the configuration file and exit.')
    parser.add_argument('--write-config', metavar='PATH', help='Write the default configuration to PATH and exit.')
    parser.add_argument('--force', action='store_true', help='(For --write-config) Overwrite an existing file.')
    parser.add_argument('--scan', metavar='PATH', help='Print the archives found below PATH and exit.')
    parser.add_argument('--version', action='store_true', help="Show program's version and config file path, then exit.")
    return parser


def _write_config(args: argparse.Namespace) -> int:
    try:
        target = write_default_config(args.write_config, force=args.force, overrides={'dest': args.dest, 'temp': args.temp})
    except OSError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    print(f"Wrote default configuration to {target}")
    return 0


def _scan(path: str, temp_path: Optional[str]) -> int:
    try:
        scanner = ArchiveScanner(temp_path=temp_path)
        targets = scanner.scan(path)
    except (NoExtractorsError, ScanError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    for target in targets:
        print(target)
    return 0


def _install_signal_handlers(dispatcher: Dispatcher) -> None:
    def _cancel(signum, frame):
        logging.warning(f"STATE: Received {signal.Signals(signum).name}, shutting down.")
        dispatcher.cancel()

    def _poll(signum, frame):
        logging.info("STATE: Poll requested by signal.")
        dispatcher.poll_now()

    signal.signal(signal.SIGINT, _cancel)
    signal.signal(signal.SIGTERM, _cancel)
    if hasattr(signal, 'SIGUSR1'):
        signal.signal(signal.SIGUSR1, _poll)


def run_daemon(config: configparser.ConfigParser, settings: DaemonConfig) -> int:
    """Runs the dispatcher until it stops.

    Returns:
        0 after a cancelled run, 1 if the dispatcher stopped on a fatal error.
    """
    try:
        scanner = ArchiveScanner(temp_path=settings.temp_path or None)
    except NoExtractorsError as e:
        logging.error(f"FATAL: {e}")
        return 1

    client = get_client(config['CLIENT'], request_timeout=settings.poll_timeout)
    dispatcher = Dispatcher(settings, client, scanner)
    _install_signal_handlers(dispatcher)
    dispatcher.start()

    while True:
        try:
            error = dispatcher.result(timeout=RESULT_POLL_INTERVAL)
            break
        except queue.Empty:
            continue

    dispatcher.cancel()
    if not dispatcher.wait(SHUTDOWN_TIMEOUT):
        logging.warning("STATE: Dispatcher did not shut down in time.")

    if error is None or isinstance(error, OperationCancelled):
        return 0
    logging.error(f"FATAL: {error}")
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    """The main entry point for the daemon.

    This function is responsible for:
    -   Parsing command-line arguments and handling the one-shot commands.
    -   Loading, updating and validating the configuration.
    -   Setting up file and console logging.
    -   Acquiring a lock so that one configuration is served by one daemon.
    -   Running the dispatcher until it is cancelled or fails.

    Returns:
        0 on successful execution, 1 on error.
    """
    parser = build_parser()
    argcomplete.autocomplete(parser)
    args = parser.parse_args(argv)

    if args.version:
        print(f"{Path(sys.argv[0]).name} {__version__}")
        print(f"Configuration file: {args.config}")
        return 0
    if args.write_config:
        return _write_config(args)
    if args.scan:
        return _scan(args.scan, args.temp)

    config = load_config(args.config)
    apply_path_overrides(config, args.dest, args.temp)
    setup_logging(config.get('PATHS', 'log_path', fallback=''), debug=args.debug, simple=args.simple)
    logging.info(f"--- torrent_unpacker {__version__} started ---")
    logging.info(f"Using configuration file: {args.config}")

    if args.check_config:
        logging.info("--- Running Configuration Check ---")
        if ConfigValidator(config).validate():
            logging.info("SUCCESS: Configuration file appears to be valid.")
            return 0
        logging.error("FAILURE: Configuration file has errors.")
        return 1

    update_config(args.config)
    if not ConfigValidator(config).validate():
        logging.error("FATAL: Configuration file has errors. Run with --check-config for details.")
        return 1
    settings = DaemonConfig.from_parser(config)

    lock = LockFile(Path(args.config).resolve().with_suffix('.lock'))
    try:
        lock.acquire()
    except RuntimeError as e:
        logging.error(f"FATAL: {e}")
        return 1

    try:
        return run_daemon(config, settings)
    except Exception as e:
        logging.error(f"An unexpected error occurred in main: {e}", exc_info=True)
        return 1
    finally:
        stop_all_processes()
        lock.release()
        logging.info("--- torrent_unpacker finished ---")


if __name__ == "__main__":
    sys.exit(main())
