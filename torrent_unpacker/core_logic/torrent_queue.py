"""Tracks the torrents reported by the client and decides which need work.

The `TorrentQueue` is the only state shared between the dispatcher thread and
the worker threads. Every public method takes the same lock, so a reader never
sees a half-applied poll.

Classes:
    QueueStatus: Lifecycle of a table entry.
    JobKind: The two kinds of work a torrent can be queued for.
    Job: A unit of work handed to exactly one worker.
    QueueEntry: The table row for one torrent hash.
    TorrentQueue: The table, its eligibility pass and the two job queues.
"""
import logging
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Optional

from ..clients.base import Torrent

DEFAULT_QUEUE_CAPACITY = 100
REMOVED_RETENTION_SECONDS = 60 * 60


class QueueStatus(Enum):
    IDLE = "idle"
    QUEUED = "queued"
    REMOVED = "removed"


class JobKind(Enum):
    CHECK = "check"
    UNPACK = "unpack"


@dataclass(frozen=True)
class Job:
    """A request to check or unpack the torrent snapshot it carries."""
    kind: JobKind
    torrent: Torrent

    @property
    def torrent_hash(self) -> str:
        return self.torrent.hash


@dataclass
class QueueEntry:
    """Latest snapshot of one torrent plus its queueing state.

    `resume_status` remembers the status an entry had when it disappeared
    from the client, so a torrent whose job is still with a worker stays
    QUEUED if it shows up again.
    """
    torrent: Torrent
    status: QueueStatus = QueueStatus.IDLE
    last_seen: float = 0.0
    resume_status: QueueStatus = QueueStatus.IDLE

    @property
    def is_queued(self) -> bool:
        return self.status == QueueStatus.QUEUED


TorrentCallback = Callable[[Torrent], None]
QueueFullCallback = Callable[[Torrent, Job], None]


class TorrentQueue:
    """A lock-protected table of torrents feeding the check and unpack queues.

    Observer callbacks run synchronously while the lock is held. They must
    return quickly and must not call back into the queue.
    """

    def __init__(
        self,
        unpack_start_category: str,
        on_added: Optional[TorrentCallback] = None,
        on_updated: Optional[TorrentCallback] = None,
        on_removed: Optional[TorrentCallback] = None,
        on_queue_full: Optional[QueueFullCallback] = None,
        unpack_capacity: int = DEFAULT_QUEUE_CAPACITY,
        check_capacity: int = DEFAULT_QUEUE_CAPACITY,
        retention_seconds: float = REMOVED_RETENTION_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initializes an empty TorrentQueue.

        Args:
            unpack_start_category: The category that requests extraction.
            on_added: Called with a torrent seen for the first time.
            on_updated: Called with every snapshot of an already known torrent.
            on_removed: Called once when a known torrent stops being reported.
            on_queue_full: Called with the torrent and job when a job queue
                has no room. The torrent stays idle and is retried on the
                next update.
            unpack_capacity: Size of the unpack job queue.
            check_capacity: Size of the check job queue.
            retention_seconds: How long an unreported torrent is kept before
                its entry is deleted.
            clock: Monotonic time source, replaceable in tests.
        """
        self.unpack_start_category = unpack_start_category
        self.on_added = on_added
        self.on_updated = on_updated
        self.on_removed = on_removed
        self.on_queue_full = on_queue_full
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._data: Dict[str, QueueEntry] = {}
        self._lock = threading.Lock()
        self._unpack_jobs: "queue.Queue[Job]" = queue.Queue(maxsize=unpack_capacity)
        self._check_jobs: "queue.Queue[Job]" = queue.Queue(maxsize=check_capacity)

    @property
    def unpack_jobs(self) -> "queue.Queue[Job]":
        return self._unpack_jobs

    @property
    def check_jobs(self) -> "queue.Queue[Job]":
        return self._check_jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)

    def get(self, torrent_hash: str) -> Optional[Torrent]:
        """Returns the latest snapshot for a hash, or None if it is unknown."""
        with self._lock:
            entry = self._data.get(torrent_hash)
            return entry.torrent if entry else None

    def status(self, torrent_hash: str) -> Optional[QueueStatus]:
        with self._lock:
            entry = self._data.get(torrent_hash)
            return entry.status if entry else None

    def remove(self, torrent_hash: str) -> None:
        with self._lock:
            self._data.pop(torrent_hash, None)

    def job_done(self, torrent_hash: str) -> None:
        """Makes a torrent eligible for evaluation again.

        Safe to call more than once and for hashes that are not in the table.
        """
        with self._lock:
            entry = self._data.get(torrent_hash)
            if entry is None:
                return
            if entry.status == QueueStatus.QUEUED:
                entry.status = QueueStatus.IDLE
            elif entry.status == QueueStatus.REMOVED:
                entry.resume_status = QueueStatus.IDLE

    def update(self, torrents: Iterable[Torrent]) -> None:
        """Merges a full torrent list from a poll and queues eligible jobs."""
        with self._lock:
            now = self._clock()
            seen = set()

            for torrent in torrents:
                seen.add(torrent.hash)
                entry = self._data.get(torrent.hash)
                if entry is not None:
                    entry.torrent = torrent
                    entry.last_seen = now
                    if entry.status == QueueStatus.REMOVED:
                        entry.status = entry.resume_status
                    if self.on_updated:
                        self.on_updated(torrent)
                else:
                    self._data[torrent.hash] = QueueEntry(torrent=torrent, last_seen=now)
                    if self.on_added:
                        self.on_added(torrent)

            for torrent_hash, entry in list(self._data.items()):
                if torrent_hash in seen:
                    continue
                if entry.status != QueueStatus.REMOVED:
                    entry.resume_status = entry.status
                    entry.status = QueueStatus.REMOVED
                    if self.on_removed:
                        self.on_removed(entry.torrent)
                if now - entry.last_seen > self.retention_seconds:
                    logging.debug(f"QUEUE: Forgetting {entry.torrent.hash} ({entry.torrent.name}), unreported for {now - entry.last_seen:.0f}s.")
                    del self._data[torrent_hash]

            self._enqueue_jobs()

    def _enqueue_jobs(self) -> None:
        """Queues a job for every idle, completed torrent that needs one. Lock must be held."""
        for entry in self._data.values():
            if entry.status != QueueStatus.IDLE or not entry.torrent.is_completed:
                continue

            if not entry.torrent.has_category:
                job = Job(JobKind.CHECK, entry.torrent)
                jobs = self._check_jobs
            elif entry.torrent.category == self.unpack_start_category:
                job = Job(JobKind.UNPACK, entry.torrent)
                jobs = self._unpack_jobs
            else:
                continue

            try:
                jobs.put_nowait(job)
            except queue.Full:
                if self.on_queue_full:
                    self.on_queue_full(entry.torrent, job)
                continue
            entry.status = QueueStatus.QUEUED
