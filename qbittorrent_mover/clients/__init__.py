from .base import TorrentClient, TorrentRecord
from .qbittorrent import QBittorrentClient

__all__ = ['TorrentClient', 'TorrentRecord', 'QBittorrentClient']
