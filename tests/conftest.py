"""Shared fixtures: an in-memory backend standing in for wpa_supplicant."""

import asyncio

import pytest

from wifi_direct.backend.base import P2pBackend
from wifi_direct.errors import TransportError
from wifi_direct.p2p.manager import WifiP2pManager

_END = object()


class FakeBackend(P2pBackend):
    """Records calls in order; calls can be held open, rejected or failed."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.completed: list[tuple] = []
        self.reject: dict[str, Exception] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False
        self._holds: dict[str, asyncio.Event] = {}
        self._events: asyncio.Queue = asyncio.Queue()

    def hold(self, name: str) -> asyncio.Event:
        """Block calls to ``name`` until the returned event is set."""
        gate = asyncio.Event()
        self._holds[name] = gate
        return gate

    def emit(self, event) -> None:
        self._events.put_nowait(event)

    def fail(self, error: Exception | None = None) -> None:
        """Simulate the daemon connection dropping."""
        self._events.put_nowait(error or TransportError("D-Bus connection lost"))

    async def _record(self, name: str, *args) -> None:
        call = (name, *args)
        self.calls.append(call)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            gate = self._holds.get(name)
            if gate is not None:
                await gate.wait()
            if name in self.reject:
                raise self.reject[name]
            self.completed.append(call)
        finally:
            self.in_flight -= 1

    async def discover_peers(self) -> None:
        await self._record("discover")

    async def stop_discovery(self) -> None:
        await self._record("stop_discovery")

    async def connect(self, device_address: str) -> None:
        await self._record("connect", device_address)

    async def create_group(self) -> None:
        await self._record("create_group")

    async def events(self):
        while True:
            item = await self._events.get()
            if item is _END:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True
        self._events.put_nowait(_END)


async def wait_until(predicate, timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(0)
    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def manager(backend) -> WifiP2pManager:
    return WifiP2pManager(backend)
