"""Worker threads that check torrents for archives and unpack them.

Workers never talk to the torrent client. They report the category a torrent
should get by posting a `SetCategory` action to the dispatcher and tell the
`TorrentQueue` they are finished with a hash through `job_done`.
"""
import abc
import logging
import os
import queue
import threading
import time
from typing import Callable, List, Optional, Type

from .actions import Action, SetCategory
from .torrent_queue import Job
from ..config_manager import Categories
from ..unpacker.archive_scanner import ArchiveScanner
from ..utils import ExtractionError, OperationCancelled, ScanError, short_hash

JOB_POLL_INTERVAL = 0.5
UNPACK_LOG_NAME = "unpack.log"


class BaseWorker(threading.Thread, metaclass=abc.ABCMeta):
    """A thread that takes jobs from one queue until the stop event is set.

    Subclasses implement `process`, which returns the final category for the
    torrent. The loop posts that category and calls `job_done` exactly once
    per job, except when the job was cancelled by shutdown: then nothing is
    reported and the entry stays queued until the process exits.
    """
    label = "WORKER"

    def __init__(
        self,
        index: int,
        jobs: "queue.Queue[Job]",
        scanner: ArchiveScanner,
        categories: Categories,
        post_action: Callable[[Action], bool],
        job_done: Callable[[str], None],
        stop_event: threading.Event,
    ):
        super().__init__(name=f"{self.label.lower()}-{index}", daemon=True)
        self.index = index
        self.jobs = jobs
        self.scanner = scanner
        self.categories = categories
        self.post_action = post_action
        self.job_done = job_done
        self.stop_event = stop_event

    @property
    def tag(self) -> str:
        return f"{self.label}/{self.index}"

    def run(self) -> None:
        while not self.stop_event.is_set():
            try:
                job = self.jobs.get(timeout=JOB_POLL_INTERVAL)
            except queue.Empty:
                continue
            try:
                self._handle(job)
            finally:
                self.jobs.task_done()
            if self.stop_event.is_set():
                break
        logging.debug(f"{self.tag}: Worker stopped.")

    def _handle(self, job: Job) -> None:
        torrent = job.torrent
        try:
            category = self.process(job)
        except OperationCancelled:
            logging.info(f"{self.tag}: Shutdown interrupted work on {short_hash(torrent.hash)} ({torrent.name}).")
            return
        except Exception as e:
            logging.exception(f"{self.tag}: Unexpected error while processing {torrent.hash} ({torrent.name}): {e}")
            category = self.categories.error
        self.set_category(torrent.hash, category)
        self.job_done(torrent.hash)

    def set_category(self, torrent_hash: str, category: str) -> None:
        self.post_action(SetCategory(torrent_hash, category))

    @abc.abstractmethod
    def process(self, job: Job) -> str:
        pass


class CheckWorker(BaseWorker):
    """Marks completed torrents without a category as archive or no-archive."""
    label = "CHECK"

    def process(self, job: Job) -> str:
        torrent = job.torrent
        scan_path = torrent.content_path
        logging.info(f"{self.tag}: Checking {torrent.hash} ({scan_path}) for archives")
        try:
            targets = self.scanner.scan(scan_path, self.stop_event)
        except ScanError as e:
            logging.error(f"{self.tag}: Error scanning path for torrent {torrent.hash} ({torrent.name}): {e}")
            return self.categories.error

        if not targets:
            return self.categories.no_archive
        logging.info(f"{self.tag}: Found {len(targets)} archive(s) in {torrent.name}")
        return self.categories.default


class UnpackWorker(BaseWorker):
    """Extracts every archive of a torrent into the destination directory."""
    label = "UNPACK"

    def __init__(self, *args, destination_path: str, **kwargs):
        super().__init__(*args, **kwargs)
        self.destination_path = destination_path

    def process(self, job: Job) -> str:
        torrent = job.torrent
        scan_path = torrent.content_path
        logging.info(f"{self.tag}: Unpacking {torrent.hash} ({torrent.name})")
        try:
            targets = self.scanner.scan(scan_path, self.stop_event)
        except ScanError as e:
            logging.error(f"{self.tag}: Error scanning path for torrent {torrent.hash} ({scan_path}): {e}")
            return self.categories.error

        if not targets:
            return self.categories.no_archive

        dest_path = os.path.join(self.destination_path, torrent.name)
        log_path = os.path.join(dest_path, UNPACK_LOG_NAME)
        try:
            os.makedirs(dest_path, exist_ok=True)
            log_file = open(log_path, 'a', encoding='utf-8')
        except OSError as e:
            logging.error(f"{self.tag}: Error opening logfile '{log_path}' for torrent {torrent.hash} ({torrent.name}): {e}")
            return self.categories.error

        failed = False
        with log_file:
            self.set_category(torrent.hash, self.categories.unpack_busy)
            log_file.write(f"=== {time.strftime('%Y-%m-%d %H:%M:%S')} Unpacking {torrent.name} ({len(targets)} target(s))\n")
            # Targets run one at a time; they share the log file and destination.
            for target in targets:
                try:
                    target.extract(dest_path, log_file, self.stop_event)
                except ExtractionError as e:
                    failed = True
                    logging.error(f"{self.tag}: Error unpacking target {target}: {e}")
                    log_file.write(f"!!! {e}\n")
                else:
                    logging.info(f"{self.tag}: Unpacked {target}")

        if failed:
            return self.categories.error
        return self.categories.unpack_done


class WorkerPool:
    """A fixed number of workers of one kind sharing a job queue."""

    def __init__(self, worker_cls: Type[BaseWorker], size: int, **worker_kwargs):
        self.workers: List[BaseWorker] = [worker_cls(index, **worker_kwargs) for index in range(size)]

    def __len__(self) -> int:
        return len(self.workers)

    def start(self) -> None:
        for worker in self.workers:
            worker.start()

    def join(self, timeout: Optional[float] = None) -> None:
        for worker in self.workers:
            if worker.is_alive():
                worker.join(timeout)
