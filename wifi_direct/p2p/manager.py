"""
Wi-Fi Direct manager: the entry point of the library.

Owns the D-Bus connection and the backend for one wireless interface and
spawns the command worker. ``initialize()`` is single-use per manager, so
a connection never has more than one worker issuing requests on it.
"""

import asyncio
import logging

from dbus_fast import BusType
from dbus_fast.aio import MessageBus

from wifi_direct.backend.base import P2pBackend
from wifi_direct.backend.wpa_supplicant import WpaSupplicantBackend, validate_interface_name
from wifi_direct.config import COMMAND_QUEUE_SIZE, EVENT_BUFFER_SIZE, WPS_METHOD
from wifi_direct.errors import P2pError, TransportError
from wifi_direct.p2p.channel import CommandSender, WifiP2pChannel
from wifi_direct.p2p.events import EventBus
from wifi_direct.p2p.worker import CommandWorker

logger = logging.getLogger(__name__)


class WifiP2pManager:
    """Manages the daemon connection and hands out the command channel."""

    def __init__(
        self,
        backend: P2pBackend,
        connection: MessageBus | None = None,
        *,
        owns_connection: bool = False,
        queue_size: int = COMMAND_QUEUE_SIZE,
        event_buffer: int = EVENT_BUFFER_SIZE,
    ) -> None:
        self._backend = backend
        self._connection = connection
        self._owns_connection = owns_connection
        self._queue_size = queue_size
        self._event_buffer = event_buffer
        self._queue: asyncio.Queue | None = None
        self._worker: CommandWorker | None = None

    @classmethod
    async def new(
        cls,
        interface_name: str,
        *,
        bus: MessageBus | None = None,
        wps_method: str = WPS_METHOD,
        **kwargs,
    ) -> "WifiP2pManager":
        """
        Open the system bus and bind a wpa_supplicant backend to ``interface_name``.

        The name is validated before any bus I/O. Pass ``bus`` to reuse an
        existing connection; the manager then leaves it open on close().
        """
        validate_interface_name(interface_name)

        owns_bus = bus is None
        if bus is None:
            try:
                bus = await MessageBus(bus_type=BusType.SYSTEM).connect()
            except Exception as e:
                raise TransportError(f"Could not connect to the system bus: {e}", e) from e
            logger.info("Connected to the D-Bus system bus")

        try:
            backend = await WpaSupplicantBackend.create(bus, interface_name, wps_method)
        except P2pError:
            if owns_bus:
                bus.disconnect()
            raise

        return cls(backend, bus, owns_connection=owns_bus, **kwargs)

    @property
    def worker(self) -> CommandWorker | None:
        return self._worker

    def initialize(self) -> WifiP2pChannel:
        """
        Spawn the command worker and return the channel to it.

        Must be called from a running event loop. Raises RuntimeError on a
        second call; use ``channel.clone()`` to share the worker instead.
        """
        if self._worker is not None:
            raise RuntimeError("WifiP2pManager.initialize() may only be called once")

        self._queue = asyncio.Queue(maxsize=self._queue_size)
        events = EventBus(self._event_buffer)
        self._worker = CommandWorker(self._backend, self._queue, events)
        channel = WifiP2pChannel(CommandSender(self._queue), events)
        self._worker.start()
        return channel

    def connection(self) -> MessageBus | None:
        # Raw connection for advanced consumers (extra interfaces, other signals)
        return self._connection

    async def close(self) -> None:
        """Stop accepting commands, let the worker drain, then drop the bus."""
        if self._worker is not None:
            self._queue.shutdown()
            await self._worker.wait_closed()
        else:
            await self._backend.close()

        if self._owns_connection and self._connection is not None and self._connection.connected:
            self._connection.disconnect()
            logger.info("Disconnected from the D-Bus system bus")

    async def __aenter__(self) -> "WifiP2pManager":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()
