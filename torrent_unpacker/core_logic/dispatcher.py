"""The dispatcher: one serialized action loop in front of the torrent client.

All calls to the torrent client happen on the dispatcher thread, one action at
a time, so category updates never interleave. Workers and the poll timer only
ever post actions into the bounded inbox.

Shutdown order: stop the poll timer, close the inbox, signal the workers,
join them, close the result queue and finally set the done event.
"""
import logging
import queue
import threading
from typing import Callable, Dict, Optional

from .actions import ACTION_TYPES, Action, AddCategory, DeQueue, GetTorrents, SetCategory
from .resilience import RETRY_FOREVER, RetryPolicy
from .torrent_queue import Job, TorrentQueue
from .workers import CheckWorker, UnpackWorker, WorkerPool
from ..clients.base import Torrent, TorrentClient
from ..config_manager import DaemonConfig
from ..unpacker.archive_scanner import ArchiveScanner
from ..utils import CategoryConflictError, OperationCancelled, RemoteClientError, RemoteTimeoutError

ACTION_QUEUE_CAPACITY = 100
ACTION_POLL_INTERVAL = 0.5


def _log_added(torrent: Torrent) -> None:
    logging.info(f"QUEUE: Added torrent {torrent.hash} ({torrent.name})")


def _log_removed(torrent: Torrent) -> None:
    logging.info(f"QUEUE: Removed torrent {torrent.hash} ({torrent.name})")


def _log_queue_full(torrent: Torrent, job: Job) -> None:
    logging.warning(f"QUEUE: Job queue full; failed to enqueue torrent {torrent.hash} ({torrent.name}) for {job.kind.value} job")


class Dispatcher:
    """Owns the torrent queue, the worker pools and the action loop.

    Attributes:
        torrent_queue: The table of known torrents and the two job queues.
        unpack_pool: Workers consuming unpack jobs.
        check_pool: Workers consuming check jobs.
        stop_event: The run-wide cancellation signal shared with every worker.
    """

    def __init__(
        self,
        config: DaemonConfig,
        client: TorrentClient,
        scanner: ArchiveScanner,
        retry_policy: RetryPolicy = RETRY_FOREVER,
        torrent_queue: Optional[TorrentQueue] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.client = client
        self.scanner = scanner
        self.retry_policy = retry_policy
        self.stop_event = stop_event or threading.Event()
        self.torrent_queue = torrent_queue or TorrentQueue(
            config.categories.unpack_start,
            on_added=_log_added,
            on_removed=_log_removed,
            on_queue_full=_log_queue_full,
        )

        self._actions: "queue.Queue[Action]" = queue.Queue(maxsize=ACTION_QUEUE_CAPACITY)
        self._results: "queue.Queue[Optional[BaseException]]" = queue.Queue()
        self._inbox_closed = threading.Event()
        self._done = threading.Event()
        self._timer: Optional[threading.Timer] = None
        self._timer_lock = threading.Lock()
        self._timeouts = 0
        self._thread: Optional[threading.Thread] = None

        self._handlers: Dict[type, Callable] = {
            GetTorrents: self._get_torrents,
            AddCategory: self._add_category,
            SetCategory: self._set_category,
            DeQueue: self._dequeue,
        }

        worker_kwargs = dict(
            scanner=scanner,
            categories=config.categories,
            post_action=self.queue_action,
            job_done=self.torrent_queue.job_done,
            stop_event=self.stop_event,
        )
        self.unpack_pool = WorkerPool(
            UnpackWorker, config.unpack_workers,
            jobs=self.torrent_queue.unpack_jobs,
            destination_path=config.destination_path,
            **worker_kwargs,
        )
        self.check_pool = WorkerPool(
            CheckWorker, config.check_workers,
            jobs=self.torrent_queue.check_jobs,
            **worker_kwargs,
        )

    # --- Public API ---

    def start(self) -> threading.Thread:
        """Runs the action loop on a background thread."""
        self._thread = threading.Thread(target=self.run, name="dispatcher", daemon=True)
        self._thread.start()
        return self._thread

    def cancel(self) -> None:
        """Cancels the run. The loop winds down and joins its workers."""
        self.stop_event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Waits until the loop has shut down completely."""
        return self._done.wait(timeout)

    def result(self, timeout: Optional[float] = None) -> Optional[BaseException]:
        """Returns the fatal error that stopped the loop, or None once it closed cleanly.

        Raises:
            queue.Empty: If nothing was reported within `timeout`.
        """
        return self._results.get(timeout=timeout)

    def queue_action(self, action: Action) -> bool:
        """Posts an action to the inbox, waiting while it is full.

        Returns:
            False if the dispatcher is shutting down and the action was dropped.
        """
        if not isinstance(action, ACTION_TYPES):
            raise TypeError(f"Not a dispatcher action: {action!r}")
        while not self._inbox_closed.is_set():
            try:
                self._actions.put(action, timeout=ACTION_POLL_INTERVAL)
                return True
            except queue.Full:
                continue
        logging.debug(f"DISPATCH: Dropping {action}, the dispatcher is shutting down.")
        return False

    def poll_now(self) -> bool:
        """Requests an immediate poll of the torrent list."""
        return self.queue_action(GetTorrents())

    def dequeue(self, torrent_hash: str) -> bool:
        """Requests that a torrent's queued flag be cleared."""
        return self.queue_action(DeQueue(torrent_hash))

    # --- Action loop ---

    def run(self) -> None:
        """Runs the action loop until a fatal error or cancellation."""
        try:
            self.unpack_pool.start()
            self.check_pool.start()

            for category in self.config.categories.all():
                self._actions.put_nowait(AddCategory(category))
            self._actions.put_nowait(GetTorrents())

            logging.info(f"DISPATCH: Up and running with {len(self.unpack_pool) + len(self.check_pool)} workers")
            self._loop()
        finally:
            self._shutdown()

    def _loop(self) -> None:
        while not self.stop_event.is_set():
            try:
                action = self._actions.get(timeout=ACTION_POLL_INTERVAL)
            except queue.Empty:
                continue
            if self.stop_event.is_set():
                break

            error = self._process(action)
            if error is not None:
                if isinstance(error, (RemoteClientError, OperationCancelled)):
                    logging.error(f"DISPATCH: Stopping: {error}")
                else:
                    logging.error(f"DISPATCH: Stopping after unexpected error: {error}", exc_info=error)
                self._results.put(error)
                return

    def _process(self, action: Action) -> Optional[BaseException]:
        """Executes one action under the retry policy.

        Timeouts are retried as the policy allows. Anything else ends the
        attempt and is returned to the loop, which treats it as fatal.
        """
        handler = self._handlers.get(type(action))
        if handler is None:
            return TypeError(f"No handler for action {action!r}")

        attempt = 0
        while True:
            attempt += 1
            try:
                handler(action)
            except RemoteTimeoutError as e:
                self._timeouts += 1
                if self.retry_policy.should_log(self._timeouts):
                    logging.warning(f"DISPATCH: {e} (attempt {attempt})")
                if not self.retry_policy.should_retry(attempt):
                    return e
                if self.retry_policy.wait(self.stop_event):
                    return OperationCancelled(f"Run cancelled while retrying {action}")
                continue
            except Exception as e:
                self._timeouts = 0
                return e
            self._timeouts = 0
            return None

    # --- Action handlers ---

    def _get_torrents(self, action: GetTorrents) -> None:
        torrents = self.client.list_torrents()
        self.torrent_queue.update(torrents)
        self._reset_timer()

    def _add_category(self, action: AddCategory) -> None:
        try:
            self.client.create_category(action.category)
        except CategoryConflictError:
            logging.info(f"DISPATCH: Failed to add category {action.category} (does it already exist?)")
            return
        logging.info(f"DISPATCH: Added category {action.category} to torrent client")

    def _set_category(self, action: SetCategory) -> None:
        self.client.set_category(action.torrent_hash, action.category)
        logging.info(f"DISPATCH: Category for torrent {action.torrent_hash} changed to {action.category}")

    def _dequeue(self, action: DeQueue) -> None:
        self.torrent_queue.job_done(action.torrent_hash)

    # --- Poll timer ---

    def _reset_timer(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.config.poll_delay, self.poll_now)
            self._timer.daemon = True
            self._timer.start()

    def _stop_timer(self) -> None:
        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _shutdown(self) -> None:
        self._stop_timer()
        self._inbox_closed.set()
        self.stop_event.set()
        self.unpack_pool.join()
        self.check_pool.join()

        pending = self._actions.qsize()
        if pending:
            logging.debug(f"DISPATCH: Discarding {pending} pending action(s).")
        try:
            self.client.logout()
        except Exception as e:
            logging.warning(f"DISPATCH: Logout from torrent client failed: {e}")
        finally:
            self._results.put(None)
            logging.info("DISPATCH: Shutting down")
            self._done.set()
