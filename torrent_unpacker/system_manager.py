import atexit
import errno
import fcntl
import logging
import os
import sys
import time
from pathlib import Path
from typing import IO, Optional

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(threadName)s - %(message)s'
QUIET_LOGGERS = ("urllib3", "qbittorrentapi")


class LockFile:
    """Ensures that only one daemon runs against a configuration at a time.

    This class uses the `fcntl` module to create an advisory lock on a file
    that holds the PID of the running daemon. A lock file left behind by a
    process that no longer exists is removed. This implementation is suitable
    for Unix-like systems.

    Attributes:
        lock_path: The Path object for the lock file.
        lock_fd: The open lock file while the lock is held.
    """

    def __init__(self, lock_path: Path):
        self.lock_path = Path(lock_path)
        self.lock_fd: Optional[IO[str]] = None
        self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired

    def acquire(self) -> None:
        """Acquires an exclusive, non-blocking lock, handling stale locks.

        Raises:
            RuntimeError: If the lock file is held by another live process.
        """
        if self.lock_path.exists():
            pid_str = self.get_locking_pid()
            if pid_str and pid_str.isdigit():
                pid = int(pid_str)
                if pid != os.getpid() and pid_exists(pid):
                    raise RuntimeError(f"Daemon is already running with PID {pid} (lock file: {self.lock_path})")
                logging.warning(f"Removing stale lock file for PID {pid} that is no longer running.")
                self.lock_path.unlink(missing_ok=True)
            else:
                if pid_str is not None:
                    logging.warning(f"Removing corrupt lock file with invalid PID: '{pid_str}'.")
                self.lock_path.unlink(missing_ok=True)

        try:
            self.lock_fd = open(self.lock_path, 'w')
            fcntl.flock(self.lock_fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            self.lock_fd.write(str(os.getpid()))
            self.lock_fd.flush()
        except OSError:
            if self.lock_fd:
                self.lock_fd.close()
                self.lock_fd = None
            pid = self.get_locking_pid()
            if pid:
                raise RuntimeError(f"Daemon is already running with PID {pid} (lock file: {self.lock_path})")
            raise RuntimeError(f"Daemon is already running (lock file: {self.lock_path})")
        atexit.register(self.release)
        self._acquired = True

    def release(self) -> None:
        """Releases the lock and deletes the lock file. Safe to call twice."""
        if self.lock_fd and self._acquired:
            try:
                fcntl.flock(self.lock_fd.fileno(), fcntl.LOCK_UN)
                self.lock_fd.close()
                self.lock_path.unlink(missing_ok=True)
                self._acquired = False
            except OSError as e:
                logging.error(f"Error releasing lock file '{self.lock_path}': {e}")
            finally:
                self.lock_fd = None

    def get_locking_pid(self) -> Optional[str]:
        """Returns the PID stored in the lock file, or None if it cannot be read."""
        try:
            return self.lock_path.read_text().strip()
        except OSError:
            return None

    def __enter__(self) -> "LockFile":
        self.acquire()
        return self

    def __exit__(self, *exc_info) -> None:
        self.release()


def pid_exists(pid: int) -> bool:
    """Checks if a process with the given PID is currently running.

    Uses `os.kill` with signal 0, which performs the permission and existence
    checks without sending anything.
    """
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except OSError as err:
        if err.errno == errno.ESRCH:
            return False
        if err.errno == errno.EPERM:
            return True
        raise
    return True


def setup_logging(log_path: Optional[str], debug: bool = False, simple: bool = False, log_dir: Optional[Path] = None) -> Path:
    """Configures the root logger with a file handler and a console handler.

    Args:
        log_path: Log file to append to. When empty, a timestamped file is
            created in `log_dir`.
        debug: If True, sets the level to DEBUG, otherwise INFO.
        simple: Use a plain StreamHandler on stdout instead of RichHandler.
        log_dir: Directory for timestamped log files. Defaults to ./logs.

    Returns:
        The path of the log file.
    """
    if log_path:
        log_file_path = Path(log_path)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
    else:
        log_dir = log_dir or Path.cwd() / 'logs'
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file_path = log_dir / f"torrent_unpacker_{time.strftime('%Y-%m-%d_%H-%M-%S')}.log"

    logger = logging.getLogger()
    log_level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(log_level)
    if logger.hasHandlers():
        logger.handlers.clear()

    file_handler = logging.FileHandler(log_file_path, mode='a', encoding='utf-8')
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(file_handler)

    if simple:
        console_handler: logging.Handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    else:
        console_handler = RichHandler(level=log_level, show_path=False, rich_tracebacks=True, markup=False, console=Console(stderr=True))
        console_handler.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(console_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return log_file_path
