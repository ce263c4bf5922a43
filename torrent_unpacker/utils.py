"""Provides utility functions and custom exceptions for the application.

This module contains the exception taxonomy shared by the remote client, the
dispatcher and the unpacker, together with small helpers used across the
torrent_unpacker package.

Classes:
    RemoteClientError: Base class for failures reported by the torrent client.
    OperationCancelled: Raised when a blocking operation observes shutdown.
    ExtractionError: Base class for per-target extraction failures.

Functions:
    short_hash: Shortens a torrent hash for log messages.
"""


class RemoteClientError(Exception):
    """Base exception for errors returned by the remote torrent client."""
    pass


class AuthenticationError(RemoteClientError):
    """Raised when the remote client rejects the configured credentials."""
    pass


class BannedError(AuthenticationError):
    """Raised when the remote client refuses to authenticate this host at all.

    qBittorrent answers a login attempt with HTTP 403 once the client IP has
    been banned after too many failed logins.
    """
    pass


class ForbiddenError(RemoteClientError):
    """Raised when a request is refused even after re-authenticating."""
    pass


class RemoteTimeoutError(RemoteClientError):
    """Raised when a request to the remote client did not finish in time."""
    pass


class RemoteTransportError(RemoteClientError):
    """Raised for connection level failures other than timeouts."""
    pass


class CategoryEmptyError(RemoteClientError):
    """Raised when a category name is empty."""
    pass


class CategoryConflictError(RemoteClientError):
    """Raised when a category name is invalid or the category already exists."""
    pass


class CategoryUnknownError(RemoteClientError):
    """Raised when assigning a category the remote client does not know."""
    pass


class OperationCancelled(Exception):
    """Raised when a blocking operation is interrupted by a shutdown request.

    Not a failure type. A cancelled scan or extraction must not be reported
    as a failed one.
    """
    pass


class ScanError(Exception):
    """Raised when a path cannot be scanned for archives."""
    pass


class NoExtractorsError(Exception):
    """Raised when none of the supported extraction tools are installed."""
    pass


class ExtractionError(Exception):
    """Base exception for a failed extraction of a single target."""
    pass


class ToolMissingError(ExtractionError):
    """Raised when the extraction tool for a target cannot be executed."""
    pass


class ToolFailedError(ExtractionError):
    """Raised when the extraction tool exits with a failure code."""

    def __init__(self, message: str, returncode: int):
        super().__init__(message)
        self.returncode = returncode


def short_hash(torrent_hash: str) -> str:
    """Returns the first ten characters of a torrent hash for logging."""
    return torrent_hash[:10]
