import configparser
import logging
from typing import Any, List, Optional

import qbittorrentapi
import requests

from .base import Torrent, TorrentClient, TorrentFilter
from ..utils import (
    AuthenticationError, BannedError, CategoryConflictError, CategoryEmptyError,
    CategoryUnknownError, ForbiddenError, RemoteTimeoutError, RemoteTransportError,
)


def _is_timeout(exc: Optional[BaseException]) -> bool:
    """Walks the exception chain looking for a requests timeout."""
    seen = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, requests.exceptions.Timeout):
            return True
        seen.add(id(exc))
        exc = exc.__cause__ or exc.__context__
    return False


def _connection_error(exc: BaseException) -> Exception:
    if _is_timeout(exc):
        return RemoteTimeoutError(f"Request to qBittorrent timed out: {exc}")
    return RemoteTransportError(f"Could not reach qBittorrent: {exc}")


class QBittorrentClient(TorrentClient):
    """
    A qBittorrent implementation of the TorrentClient interface.

    The session is opened lazily on the first request. A 403 on an ordinary
    request is answered with one re-login and one retry, so an expired session
    is never visible to the caller. Login failures are terminal and raised as
    `AuthenticationError` or `BannedError`.
    """

    def __init__(self, config: configparser.SectionProxy, request_timeout: Optional[float] = None):
        """
        Initialize the QBittorrentClient.

        Args:
            config: The [CLIENT] section holding host, port, username,
                password and verify_cert.
            request_timeout: Per-request timeout in seconds; every attempt made
                by the dispatcher gets a fresh window of this length.
        """
        super().__init__(config)
        self.request_timeout = request_timeout
        self._logged_in = False

    def _has_credentials(self) -> bool:
        return bool(self.config.get('username', fallback=''))

    def connect(self) -> None:
        """Creates the API client and logs in when credentials are configured."""
        host = self.config.get('host', fallback='127.0.0.1')
        port = self.config.getint('port', fallback=80)
        username = self.config.get('username', fallback='')
        password = self.config.get('password', fallback='')
        verify_cert = self.config.getboolean('verify_cert', fallback=True)

        logging.info(f"CLIENT: Connecting to qBittorrent at {host}:{port}...")
        self.client = qbittorrentapi.Client(
            host=host,
            port=port,
            username=username,
            password=password,
            VERIFY_WEBUI_CERTIFICATE=verify_cert,
            REQUESTS_ARGS={'timeout': self.request_timeout},
        )
        if self._has_credentials():
            self._log_in()

    def _log_in(self) -> None:
        try:
            self.client.auth_log_in()
            version = self.client.app.version
        except qbittorrentapi.LoginFailed as e:
            raise AuthenticationError(f"qBittorrent rejected the configured credentials: {e}") from e
        except qbittorrentapi.Forbidden403Error as e:
            raise BannedError("qBittorrent refused the login; this host is banned") from e
        except (qbittorrentapi.APIConnectionError, requests.exceptions.RequestException) as e:
            raise _connection_error(e) from e
        self._logged_in = True
        logging.info(f"CLIENT: Logged in to qBittorrent. Version: {version}")

    def _ensure_session(self) -> None:
        if self.client is None:
            self.connect()
        elif self._has_credentials() and not self._logged_in:
            self._log_in()

    def _request(self, method_name: str, relogin: bool = True, **kwargs: Any) -> Any:
        """Calls an API method, renewing the session once on HTTP 403.

        HTTP errors other than 403 propagate unchanged so that callers can map
        the status codes that carry meaning for them.
        """
        self._ensure_session()
        try:
            return getattr(self.client, method_name)(**kwargs)
        except qbittorrentapi.Forbidden403Error as e:
            if relogin and self._has_credentials():
                logging.info(f"CLIENT: '{method_name}' was forbidden, renewing the session.")
                self._logged_in = False
                return self._request(method_name, relogin=False, **kwargs)
            raise ForbiddenError(f"qBittorrent refused '{method_name}'") from e
        except qbittorrentapi.HTTPError:
            raise
        except (qbittorrentapi.APIConnectionError, requests.exceptions.RequestException) as e:
            raise _connection_error(e) from e

    @staticmethod
    def _to_torrent(qbit_torrent: Any) -> Torrent:
        """Converts a qBittorrent torrent dictionary to the Torrent dataclass."""
        return Torrent(
            hash=qbit_torrent.get('hash', ''),
            name=qbit_torrent.get('name', ''),
            save_path=qbit_torrent.get('save_path', ''),
            category=qbit_torrent.get('category') or '',
            size=int(qbit_torrent.get('size', 0)),
            completed=int(qbit_torrent.get('completed', 0)),
            progress=float(qbit_torrent.get('progress', 0.0)),
            state=qbit_torrent.get('state', ''),
            added_on=int(qbit_torrent.get('added_on', 0)),
            completion_on=int(qbit_torrent.get('completion_on', 0)),
        )

    def list_torrents(self, torrent_filter: Optional[TorrentFilter] = None) -> List[Torrent]:
        kwargs = torrent_filter.to_kwargs() if torrent_filter else {}
        torrents = self._request('torrents_info', **kwargs)
        logging.debug(f"CLIENT: qBittorrent reported {len(torrents)} torrent(s).")
        return [self._to_torrent(t) for t in torrents]

    def create_category(self, name: str) -> None:
        try:
            self._request('torrents_create_category', name=name)
        except qbittorrentapi.Conflict409Error as e:
            raise CategoryConflictError(f"Category '{name}' is invalid or already exists") from e
        except qbittorrentapi.HTTP400Error as e:
            raise CategoryEmptyError("Category name is empty") from e

    def set_category(self, torrent_hash: str, category: str) -> None:
        try:
            self._request('torrents_set_category', category=category, torrent_hashes=torrent_hash)
        except qbittorrentapi.Conflict409Error as e:
            raise CategoryUnknownError(f"Category '{category}' does not exist") from e

    def logout(self) -> None:
        if self.client is None or not self._logged_in:
            return
        try:
            self.client.auth_log_out()
        except (qbittorrentapi.APIError, requests.exceptions.RequestException) as e:
            logging.warning(f"CLIENT: Logout from qBittorrent failed: {e}")
        finally:
            self._logged_in = False
