"""
Caller-facing channel to the command worker.

Every command is submitted in two stages: awaiting the command method
returns once the command is on the worker's queue, and the future it
returns resolves when the daemon has acknowledged (or rejected) it::

    pending = await channel.discover_peers()   # accepted onto the queue
    await pending                               # daemon acknowledged
"""

import asyncio
import logging
from dataclasses import dataclass, field

from wifi_direct.backend.base import P2pBackend
from wifi_direct.errors import ChannelClosedError
from wifi_direct.p2p.events import EventBus, Subscription
from wifi_direct.p2p.models import normalize_mac

logger = logging.getLogger(__name__)


# --- Commands ---

@dataclass
class Command:
    """A request routed through the worker; ``respond_to`` is resolved once."""
    respond_to: asyncio.Future = field(repr=False)
    name = "command"

    async def apply(self, backend: P2pBackend) -> None:
        raise NotImplementedError

    def resolve(self, error: BaseException | None = None) -> None:
        """Resolve the completion handle unless the caller already gave up on it."""
        if self.respond_to.done():
            return
        if error is None:
            self.respond_to.set_result(None)
        else:
            self.respond_to.set_exception(error)


@dataclass
class Discover(Command):
    name = "discover"

    async def apply(self, backend: P2pBackend) -> None:
        await backend.discover_peers()


@dataclass
class StopDiscovery(Command):
    name = "stop_discovery"

    async def apply(self, backend: P2pBackend) -> None:
        await backend.stop_discovery()


@dataclass
class Connect(Command):
    device_address: str = ""
    name = "connect"

    async def apply(self, backend: P2pBackend) -> None:
        await backend.connect(self.device_address)


@dataclass
class CreateGroup(Command):
    name = "create_group"

    async def apply(self, backend: P2pBackend) -> None:
        await backend.create_group()


class CommandSender:
    """Queue end shared by a channel and all of its clones."""

    def __init__(self, queue: asyncio.Queue) -> None:
        self.queue = queue
        self.handles = 0

    def acquire(self) -> None:
        self.handles += 1

    def release(self) -> None:
        self.handles -= 1
        if self.handles == 0:
            logger.info("Last channel handle closed, shutting down command queue")
            self.queue.shutdown()


class WifiP2pChannel:
    """Handle for issuing P2P commands and subscribing to events."""

    def __init__(self, sender: CommandSender, events: EventBus) -> None:
        self._sender = sender
        self._events = events
        self._closed = False
        sender.acquire()

    @property
    def closed(self) -> bool:
        return self._closed

    def clone(self) -> "WifiP2pChannel":
        """Return another handle on the same worker."""
        if self._closed:
            raise ChannelClosedError("channel")
        return WifiP2pChannel(self._sender, self._events)

    def subscribe_events(self) -> Subscription:
        # Each subscriber gets its own buffer and only sees later events
        return self._events.subscribe()

    async def discover_peers(self) -> asyncio.Future:
        return await self._submit(Discover)

    async def stop_discovery(self) -> asyncio.Future:
        return await self._submit(StopDiscovery)

    async def connect(self, device_address: str) -> asyncio.Future:
        """Queue a connect to ``device_address``. Raises ValueError if it is not a MAC."""
        return await self._submit(Connect, device_address=normalize_mac(device_address))

    async def create_group(self) -> asyncio.Future:
        return await self._submit(CreateGroup)

    async def _submit(self, command_cls: type[Command], **fields) -> asyncio.Future:
        if self._closed:
            raise ChannelClosedError("channel")
        respond_to = asyncio.get_running_loop().create_future()
        # Callers may never await stage two; mark its outcome as retrieved
        respond_to.add_done_callback(lambda f: f.cancelled() or f.exception())
        command = command_cls(respond_to=respond_to, **fields)
        try:
            await self._sender.queue.put(command)
        except asyncio.QueueShutDown:
            # The worker is gone or shutting down
            raise ChannelClosedError("manager") from None
        logger.debug(f"Queued {command.name}")
        return respond_to

    def close(self) -> None:
        """Release this handle. The worker stops once every handle is closed."""
        if self._closed:
            return
        self._closed = True
        self._sender.release()

    async def __aenter__(self) -> "WifiP2pChannel":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()
