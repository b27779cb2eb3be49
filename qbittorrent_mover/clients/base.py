import abc
from dataclasses import dataclass
from typing import List

from ..config_manager import ServerProfile


@dataclass(frozen=True)
class TorrentRecord:
    """A completed torrent as reported by a server.

    `category` is an empty string when the server reports none; an empty
    category never maps to a destination.
    """
    save_path: str
    name: str
    category: str
    hash: str


class TorrentClient(abc.ABC):
    """
    An abstract base class for a torrent client bound to one server.

    Instances are cheap and are not shared between threads: every task that
    talks to a server builds its own client from the server's profile.
    """

    def __init__(self, profile: ServerProfile):
        """Initializes the client with the profile of the server it talks to."""
        self.profile = profile

    @abc.abstractmethod
    def is_online(self) -> bool:
        """Returns True if the server answers its version endpoint with a success status.

        Raises:
            TransportError: If the server could not be reached.
        """
        pass

    @abc.abstractmethod
    def list_completed(self) -> List[TorrentRecord]:
        """Lists the torrents the server reports as completed.

        Raises:
            TransportError: If the request failed.
            DecodeError: If the response does not have the expected shape.
        """
        pass

    @abc.abstractmethod
    def delete_torrent(self, torrent_hash: str) -> None:
        """Removes a torrent from the server without touching its data.

        Raises:
            TransportError: If the request failed.
        """
        pass
