import logging
import os
from collections.abc import Mapping, Sequence
from typing import Any, List

import qbittorrentapi
from qbittorrentapi.exceptions import APIConnectionError, APIError, HTTPError, NotFound404Error

from .base import TorrentClient, TorrentRecord
from ..config_manager import ServerProfile
from ..utils import DecodeError, TransportError


class Timeouts:
    HTTP = int(os.getenv('QM_HTTP_TIMEOUT', '20'))


REQUIRED_FIELDS = ('save_path', 'name', 'hash')


class SingleAttemptClient(qbittorrentapi.Client):
    """
    A `qbittorrentapi.Client` that sends each API request exactly once.

    The stock request manager retries failed and 5XX requests at least once and
    rebuilds its connection between attempts. Here a request either answers or
    fails; the polling cycle is the only retry. Version-gated endpoints are not
    checked, so only endpoints every Web API version has should be called.
    """

    def _request_manager(self, http_method, api_namespace, api_method, _retries=1, _retry_backoff_factor=0.3,
                         version_introduced="", version_removed="", **kwargs):
        try:
            return self._request(http_method=http_method, api_namespace=api_namespace, api_method=api_method, **kwargs)
        except APIError:
            raise
        except Exception as e:
            raise APIConnectionError(f"Failed to connect to qBittorrent: {e!r}") from e


class QBittorrentClient(TorrentClient):
    """
    A qBittorrent WebUI client for one server.

    Every request carries the profile's basic credentials and a bounded
    timeout, and is sent once: the library's request retries, its urllib3
    adapter retries and its HTTP/HTTPS probing are all disabled. A failed
    request is retried by the next polling cycle.
    """

    def __init__(self, profile: ServerProfile):
        super().__init__(profile)
        self.client = SingleAttemptClient(
            host=profile.qbit_url,
            username=profile.username,
            password=profile.password,
            VERIFY_WEBUI_CERTIFICATE=profile.verify_cert,
            FORCE_SCHEME_FROM_HOST=True,
            REQUESTS_ARGS={
                'timeout': Timeouts.HTTP,
                'auth': (profile.username, profile.password),
            },
            HTTPADAPTER_ARGS={'max_retries': 0},
        )

    def is_online(self) -> bool:
        """Checks the server's version endpoint."""
        try:
            version = self.client.app_version()
        except HTTPError as e:
            logging.warning(f"CLIENT: [{self.profile.name}] Version check answered with an error status: {e}")
            return False
        except APIError as e:
            raise TransportError(f"[{self.profile.name}] Could not reach {self.profile.qbit_url}: {e}") from e
        logging.debug(f"CLIENT: [{self.profile.name}] qBittorrent version {version}")
        return True

    def list_completed(self) -> List[TorrentRecord]:
        """Lists completed torrents, validating every entry of the response."""
        try:
            torrents = self.client.torrents_info(status_filter='completed', SIMPLE_RESPONSES=True)
        except APIError as e:
            # The library re-raises body parsing failures as a bare APIError.
            if isinstance(e.__cause__ or e.__context__, ValueError):
                raise DecodeError(f"[{self.profile.name}] Torrent list is not valid JSON: {e}") from e
            raise TransportError(f"[{self.profile.name}] Could not list completed torrents: {e}") from e

        if isinstance(torrents, (str, bytes)) or not isinstance(torrents, Sequence):
            raise DecodeError(f"[{self.profile.name}] Expected a list of torrents, got {type(torrents).__name__}")
        return [self._to_torrent_record(t) for t in torrents]

    def _to_torrent_record(self, entry: Any) -> TorrentRecord:
        """Converts one entry of the torrent list, rejecting malformed entries."""
        if not isinstance(entry, Mapping):
            raise DecodeError(f"[{self.profile.name}] Expected a torrent object, got {type(entry).__name__}")
        for key in REQUIRED_FIELDS:
            if not isinstance(entry.get(key), str):
                raise DecodeError(f"[{self.profile.name}] Torrent entry is missing text field '{key}'")
        category = entry.get('category')
        if category is None:
            category = ''
        elif not isinstance(category, str):
            raise DecodeError(f"[{self.profile.name}] Torrent '{entry['name']}' has a non-text category")
        return TorrentRecord(
            save_path=entry['save_path'],
            name=entry['name'],
            category=category,
            hash=entry['hash'],
        )

    def delete_torrent(self, torrent_hash: str) -> None:
        """Removes the torrent entry; the data has already been moved away."""
        try:
            self.client.torrents_delete(torrent_hashes=torrent_hash, delete_files=False)
        except NotFound404Error:
            logging.warning(f"CLIENT: [{self.profile.name}] Torrent {torrent_hash} already deleted or not found.")
        except APIError as e:
            raise TransportError(f"[{self.profile.name}] Could not delete torrent {torrent_hash}: {e}") from e
