import logging
import os
import subprocess
import threading
from typing import IO, List, Mapping, Optional, Set

from ..utils import OperationCancelled, ToolMissingError

logger = logging.getLogger(__name__)

# Global state to track active processes for graceful shutdown
_active_processes: Set[subprocess.Popen] = set()
_process_lock = threading.Lock()

POLL_INTERVAL = 0.5
TERMINATE_GRACE_SECONDS = 5


def _register_process(process: subprocess.Popen) -> None:
    """Registers a process as active."""
    with _process_lock:
        _active_processes.add(process)


def _unregister_process(process: subprocess.Popen) -> None:
    """Unregisters a process."""
    with _process_lock:
        _active_processes.discard(process)


def stop_all_processes() -> None:
    """Terminates every tracked extraction process."""
    with _process_lock:
        processes = list(_active_processes)
    if processes:
        logger.info(f"Stopping {len(processes)} active extraction process(es)...")
    for p in processes:
        try:
            if p.poll() is None:
                p.terminate()
        except OSError as e:
            logger.warning(f"Failed to terminate process: {e}")


def _terminate(process: subprocess.Popen) -> None:
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


def run_tool(
    command: List[str],
    log_sink: IO,
    stop_event: Optional[threading.Event] = None,
    extra_env: Optional[Mapping[str, str]] = None,
) -> int:
    """Runs an extraction tool and waits for it, honouring a stop event.

    Standard output and standard error of the tool are both written to
    `log_sink`, so the sink must be a real file object with a descriptor.

    Args:
        command: The command line to execute.
        log_sink: An open, writable file receiving all tool output.
        stop_event: When set while the tool runs, the tool is terminated.
        extra_env: Variables added to the inherited environment.

    Returns:
        The exit code of the tool.

    Raises:
        ToolMissingError: If the executable cannot be started.
        OperationCancelled: If `stop_event` was set before the tool finished.
    """
    if stop_event is not None and stop_event.is_set():
        raise OperationCancelled("Shutdown requested before the tool was started")

    env = None
    if extra_env:
        env = dict(os.environ)
        env.update(extra_env)

    log_sink.flush()
    try:
        process = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=log_sink,
            stderr=subprocess.STDOUT,
            env=env,
        )
    except OSError as e:
        raise ToolMissingError(f"Cannot execute '{command[0]}': {e}") from e

    _register_process(process)
    try:
        while True:
            try:
                return process.wait(timeout=POLL_INTERVAL)
            except subprocess.TimeoutExpired:
                pass
            if stop_event is not None and stop_event.is_set():
                logger.warning(f"Shutdown requested, terminating '{command[0]}' (pid {process.pid}).")
                _terminate(process)
                raise OperationCancelled(f"'{command[0]}' was interrupted by shutdown")
    finally:
        if process.poll() is None:
            logger.warning("Cleaning up orphaned extraction process...")
            _terminate(process)
        _unregister_process(process)
