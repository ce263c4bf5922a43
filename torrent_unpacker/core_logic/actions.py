"""Requests processed one at a time by the dispatcher's action loop.

The set of actions is closed: the dispatcher maps each of these types to one
handler and refuses anything else.
"""
from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class GetTorrents:
    """Poll the client for the full torrent list."""
    pass


@dataclass(frozen=True)
class AddCategory:
    category: str


@dataclass(frozen=True)
class SetCategory:
    torrent_hash: str
    category: str


@dataclass(frozen=True)
class DeQueue:
    """Administrative reset of a torrent's queued flag."""
    torrent_hash: str


Action = Union[GetTorrents, AddCategory, SetCategory, DeQueue]

ACTION_TYPES = (GetTorrents, AddCategory, SetCategory, DeQueue)
