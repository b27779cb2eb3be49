import logging
import signal

import pytest

from qbittorrent_mover.clients.base import TorrentRecord
from qbittorrent_mover.config_manager import ServerProfile


@pytest.fixture
def make_profile():
    """Builds a ServerProfile with test defaults; keyword arguments override them."""
    def _make(**overrides) -> ServerProfile:
        values = {
            'name': 'seedbox',
            'qbit_url': 'http://localhost:8080',
            'username': 'admin',
            'password': 'adminadmin',
        }
        values.update(overrides)
        return ServerProfile(**values)
    return _make


@pytest.fixture
def make_torrent():
    def _make(name: str, save_path: str, category: str = 'movies', hash_: str = '') -> TorrentRecord:
        return TorrentRecord(save_path=save_path, name=name, category=category, hash=hash_ or f"hash_{name}")
    return _make


@pytest.fixture
def restore_logging():
    """Puts the root logger back the way it was after tests that reconfigure it."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def restore_signals():
    saved = {sig: signal.getsignal(sig) for sig in (signal.SIGINT, signal.SIGTERM)}
    yield
    for sig, handler in saved.items():
        signal.signal(sig, handler)
