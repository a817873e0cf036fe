"""Abstract daemon backend used by the command worker."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from wifi_direct.p2p.models import P2pEvent


class P2pBackend(ABC):
    """
    Request/acknowledge surface over the P2P daemon.

    Each operation returns once the daemon has accepted the request. The
    effect of the request (scan running, link up, group formed) is reported
    later through ``events()``.
    """

    @abstractmethod
    async def discover_peers(self) -> None:
        """Start a peer discovery scan (p2p_find)."""

    @abstractmethod
    async def stop_discovery(self) -> None:
        """Stop the discovery scan (p2p_stop_find). Succeeds if none is running."""

    @abstractmethod
    async def connect(self, device_address: str) -> None:
        """Start association with a peer by MAC address (p2p_connect)."""

    @abstractmethod
    async def create_group(self) -> None:
        """Form a P2P group (p2p_group_add)."""

    @abstractmethod
    def events(self) -> AsyncIterator[P2pEvent]:
        """
        Yield one event per daemon notification.

        The iterator ends when the backend is closed and raises
        TransportError if the connection to the daemon is lost.
        """

    async def close(self) -> None:
        """Release daemon resources. Ends ``events()``."""
