"""
Broadcast event bus.

One producer (the command worker) publishes ``P2pEvent`` values; every
subscription gets its own bounded buffer and sees each event published
after it subscribed, in publication order.

When a subscriber falls behind and its buffer is full, the oldest unread
event is dropped. The next ``recv()`` on that subscription raises
``EventsLaggedError`` with the number of dropped events, then delivery
resumes with the oldest event still buffered. Publishing never blocks.
"""

import asyncio
import logging
from collections import deque

from wifi_direct.config import EVENT_BUFFER_SIZE
from wifi_direct.errors import ChannelClosedError, EventsLaggedError
from wifi_direct.p2p.models import P2pEvent

logger = logging.getLogger(__name__)


class Subscription:
    """A single subscriber's view of the event bus."""

    def __init__(self, bus: "EventBus", capacity: int) -> None:
        self._bus = bus
        self._capacity = capacity
        self._buffer: deque[P2pEvent] = deque()
        self._missed = 0
        self._closed = False
        self._ready = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        """Number of events buffered and not yet received."""
        return len(self._buffer)

    def _push(self, event: P2pEvent) -> None:
        if self._closed:
            return
        if len(self._buffer) >= self._capacity:
            self._buffer.popleft()
            self._missed += 1
        self._buffer.append(event)
        self._ready.set()

    def _end(self) -> None:
        self._closed = True
        self._ready.set()

    async def recv(self) -> P2pEvent:
        """
        Wait for the next event.

        Raises EventsLaggedError once after events were dropped, and
        ChannelClosedError when the bus is closed and the buffer is empty.
        """
        while True:
            if self._missed:
                missed, self._missed = self._missed, 0
                raise EventsLaggedError(missed)
            if self._buffer:
                return self._buffer.popleft()
            if self._closed:
                raise ChannelClosedError("event bus")
            self._ready.clear()
            await self._ready.wait()

    def close(self) -> None:
        """Unsubscribe and discard anything still buffered."""
        self._bus._remove(self)
        self._buffer.clear()
        self._missed = 0
        self._end()

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc) -> None:
        self.close()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> P2pEvent:
        while True:
            try:
                return await self.recv()
            except EventsLaggedError as e:
                logger.warning(f"Event subscriber lagged: {e}")
            except ChannelClosedError:
                raise StopAsyncIteration


class EventBus:
    """Fans events out to every live subscription."""

    def __init__(self, capacity: int = EVENT_BUFFER_SIZE) -> None:
        if capacity < 1:
            raise ValueError("event buffer capacity must be at least 1")
        self._capacity = capacity
        self._subscribers: list[Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def receiver_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Create a subscription that only sees events published from now on."""
        sub = Subscription(self, self._capacity)
        if self._closed:
            sub._end()
        else:
            self._subscribers.append(sub)
        return sub

    def publish(self, event: P2pEvent) -> int:
        """Deliver ``event`` to every subscriber. Returns how many got it."""
        if self._closed:
            raise ChannelClosedError("event bus")
        for sub in self._subscribers:
            sub._push(event)
        logger.debug(f"Published {event.kind} to {len(self._subscribers)} subscriber(s)")
        return len(self._subscribers)

    def close(self) -> None:
        """Stop the bus. Subscribers drain their buffers, then see closure."""
        if self._closed:
            return
        self._closed = True
        for sub in self._subscribers:
            sub._end()
        self._subscribers.clear()

    def _remove(self, sub: Subscription) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)
