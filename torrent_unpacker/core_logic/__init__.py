from .actions import AddCategory, DeQueue, GetTorrents, SetCategory
from .dispatcher import Dispatcher
from .resilience import RETRY_FOREVER, RetryPolicy
from .torrent_queue import Job, JobKind, QueueStatus, TorrentQueue
from .workers import CheckWorker, UnpackWorker, WorkerPool

__all__ = [
    'AddCategory', 'DeQueue', 'GetTorrents', 'SetCategory', 'Dispatcher',
    'RETRY_FOREVER', 'RetryPolicy', 'Job', 'JobKind', 'QueueStatus', 'TorrentQueue',
    'CheckWorker', 'UnpackWorker', 'WorkerPool',
]
