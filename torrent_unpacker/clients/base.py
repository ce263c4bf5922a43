import abc
import configparser
import os
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional

# Seeding or finished states; a torrent in any other state may still change on disk.
COMPLETED_STATES: FrozenSet[str] = frozenset({
    'pausedUP', 'stoppedUP', 'queuedUP', 'uploading', 'stalledUP', 'checkingUP',
})


@dataclass(frozen=True)
class Torrent:
    """A snapshot of one torrent as reported by the remote client."""
    hash: str
    name: str
    save_path: str
    category: str = ""
    size: int = 0
    completed: int = 0
    progress: float = 0.0
    state: str = ""
    added_on: int = 0
    completion_on: int = 0

    @property
    def is_completed(self) -> bool:
        """True if every byte is downloaded and the torrent is seeding or done."""
        return (
            self.size == self.completed
            and self.progress == 1.0
            and self.state in COMPLETED_STATES
        )

    @property
    def has_category(self) -> bool:
        return len(self.category) > 0

    @property
    def content_path(self) -> str:
        """The file or directory holding the torrent's data."""
        return os.path.join(self.save_path, self.name)


@dataclass
class TorrentFilter:
    """Optional filter for `TorrentClient.list_torrents`."""
    categories: List[str] = field(default_factory=list)
    hashes: List[str] = field(default_factory=list)
    status_filter: Optional[str] = None
    sort: Optional[str] = None
    limit: int = 0
    offset: int = 0

    def add_category(self, category: str) -> None:
        self.categories.append(category)

    def add_hash(self, torrent_hash: str) -> None:
        self.hashes.append(torrent_hash)

    def with_limit(self, limit: int) -> None:
        """Sets the result limit. Zero or a negative value means no limit."""
        self.limit = max(0, limit)

    def to_kwargs(self) -> Dict[str, Any]:
        """Converts the filter into keyword arguments for `torrents_info`."""
        kwargs: Dict[str, Any] = {}
        # The Web API accepts a single category per request.
        if self.categories:
            kwargs['category'] = self.categories[0]
        if self.hashes:
            kwargs['torrent_hashes'] = '|'.join(self.hashes)
        if self.status_filter:
            kwargs['status_filter'] = self.status_filter
        if self.sort:
            kwargs['sort'] = self.sort
        if self.limit > 0:
            kwargs['limit'] = self.limit
        if self.offset:
            kwargs['offset'] = self.offset
        return kwargs


class TorrentClient(abc.ABC):
    """
    An abstract base class for the remote torrent client used by the dispatcher.

    Implementations translate library specific failures into the exceptions
    defined in `torrent_unpacker.utils` so the dispatcher can classify them.
    """

    def __init__(self, config: configparser.SectionProxy):
        """Initializes the client with its specific configuration section."""
        self.config = config
        self.client = None

    @abc.abstractmethod
    def connect(self) -> None:
        """Authenticates against the torrent client. Raises on failure."""
        pass

    @abc.abstractmethod
    def list_torrents(self, torrent_filter: Optional[TorrentFilter] = None) -> List[Torrent]:
        """Returns a snapshot of every torrent matching the optional filter."""
        pass

    @abc.abstractmethod
    def create_category(self, name: str) -> None:
        """Creates a category on the client."""
        pass

    @abc.abstractmethod
    def set_category(self, torrent_hash: str, category: str) -> None:
        """Assigns a category to a torrent."""
        pass

    @abc.abstractmethod
    def logout(self) -> None:
        """Ends the session with the client, if one is open."""
        pass
