"""qBittorrent Mover.

Polls qBittorrent servers for completed torrents, moves their data into
per-category directories and removes the finished entries from the server.
"""

__version__ = "1.2.0"
