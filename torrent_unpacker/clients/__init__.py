import configparser
import logging
from typing import Optional

from .base import Torrent, TorrentClient, TorrentFilter


def get_client(config_section: configparser.SectionProxy, request_timeout: Optional[float] = None) -> TorrentClient:
    """
    Factory function to get a torrent client instance based on the config.
    """
    client_type = config_section.get('type', fallback='qbittorrent').strip()
    if not client_type:
        raise ValueError("Client 'type' not specified in the configuration section.")

    logging.info(f"Creating client of type: {client_type}")

    if client_type.lower() == 'qbittorrent':
        from .qbittorrent import QBittorrentClient
        return QBittorrentClient(config_section, request_timeout=request_timeout)
    else:
        raise ValueError(f"Unsupported client type: {client_type}")


__all__ = ['Torrent', 'TorrentClient', 'TorrentFilter', 'get_client']
