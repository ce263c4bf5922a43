import configparser
import dataclasses
import threading
import time
from collections import defaultdict, deque
from typing import Callable, Deque, Dict, List, Optional

from torrent_unpacker.clients.base import Torrent, TorrentClient, TorrentFilter
from torrent_unpacker.utils import CategoryConflictError, CategoryUnknownError


def make_torrent(hash_: str, name: Optional[str] = None, save_path: str = "/downloads", category: str = "",
                 state: str = "uploading", progress: float = 1.0, size: int = 100, completed: Optional[int] = None) -> Torrent:
    """Builds a torrent snapshot. Defaults describe a completed, seeding torrent."""
    return Torrent(
        hash=hash_,
        name=name or f"torrent-{hash_}",
        save_path=save_path,
        category=category,
        size=size,
        completed=size if completed is None else completed,
        progress=progress,
        state=state,
    )


class FakeTorrentClient(TorrentClient):
    """
    An in-memory torrent client that behaves like qBittorrent's category API.

    Failures can be scripted per method with `fail_next`. Every call is
    recorded in `calls` as a (method, args) tuple.
    """

    def __init__(self, torrents: Optional[List[Torrent]] = None):
        config = configparser.ConfigParser()
        config.read_dict({'CLIENT': {'type': 'fake'}})
        super().__init__(config['CLIENT'])
        self.torrents: Dict[str, Torrent] = {t.hash: t for t in torrents or []}
        self.categories: set = set()
        self.calls: List[tuple] = []
        self.logged_out = False
        self._failures: Dict[str, Deque[BaseException]] = defaultdict(deque)
        self._lock = threading.Lock()

    def fail_next(self, method: str, exc: BaseException, times: int = 1) -> None:
        with self._lock:
            for _ in range(times):
                self._failures[method].append(exc)

    def _record(self, method: str, *args) -> None:
        with self._lock:
            self.calls.append((method, args))
            failures = self._failures.get(method)
            exc = failures.popleft() if failures else None
        if exc is not None:
            raise exc

    def calls_to(self, method: str) -> List[tuple]:
        with self._lock:
            return [args for name, args in self.calls if name == method]

    def add_torrent(self, torrent: Torrent) -> None:
        with self._lock:
            self.torrents[torrent.hash] = torrent

    def remove_torrent(self, torrent_hash: str) -> None:
        with self._lock:
            self.torrents.pop(torrent_hash, None)

    def category_of(self, torrent_hash: str) -> str:
        with self._lock:
            return self.torrents[torrent_hash].category

    def connect(self) -> None:
        self._record('connect')

    def list_torrents(self, torrent_filter: Optional[TorrentFilter] = None) -> List[Torrent]:
        self._record('list_torrents')
        with self._lock:
            return list(self.torrents.values())

    def create_category(self, name: str) -> None:
        self._record('create_category', name)
        with self._lock:
            if name in self.categories:
                raise CategoryConflictError(f"Category '{name}' is invalid or already exists")
            self.categories.add(name)

    def set_category(self, torrent_hash: str, category: str) -> None:
        self._record('set_category', torrent_hash, category)
        with self._lock:
            if category and category not in self.categories:
                raise CategoryUnknownError(f"Category '{category}' does not exist")
            torrent = self.torrents.get(torrent_hash)
            if torrent is not None:
                self.torrents[torrent_hash] = dataclasses.replace(torrent, category=category)

    def logout(self) -> None:
        self._record('logout')
        self.logged_out = True


def wait_until(predicate: Callable[[], bool], timeout: float = 10.0, interval: float = 0.02) -> bool:
    """Polls `predicate` until it returns True or `timeout` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
