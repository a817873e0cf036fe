import asyncio
import itertools

import pytest
from dbus_fast import Message, Variant

from wifi_direct.backend.wpa_supplicant import (
    WpaSupplicantBackend,
    decode_primary_type,
    translate_signal,
    validate_interface_name,
)
from wifi_direct.config import WPA_SUPPLICANT_P2P_IFACE
from wifi_direct.errors import (
    BackendError,
    ChannelClosedError,
    DecodeError,
    InvalidInterfaceError,
    TransportError,
)
from wifi_direct.p2p.manager import WifiP2pManager
from wifi_direct.p2p.models import (
    Connected,
    DiscoveryStarted,
    DiscoveryStopped,
    GroupCreated,
    P2pDevice,
    PeerFound,
)

IFACE_PATH = "/fi/w1/wpa_supplicant1/Interfaces/0"
PEER_MAC = b"\x02\x11\x22\x33\x44\x55"


class FakeBus:
    """Answers method calls the way wpa_supplicant would."""

    def __init__(self) -> None:
        self.sent: list[Message] = []
        self.handlers = []
        self.connected = True
        self.errors: dict[str, tuple[str, str]] = {}
        self.raise_on_call: Exception | None = None
        self._disconnected = asyncio.get_running_loop().create_future()
        self._serials = itertools.count(1)

    async def call(self, message: Message) -> Message:
        if self.raise_on_call is not None:
            raise self.raise_on_call
        # MessageBus.call numbers every outgoing message; replies need the serial
        message.serial = next(self._serials)
        self.sent.append(message)
        if message.member in self.errors:
            name, text = self.errors[message.member]
            return Message.new_error(message, name, text)
        if message.member == "GetInterface":
            return Message.new_method_return(message, "o", [IFACE_PATH])
        if message.member == "Connect":
            return Message.new_method_return(message, "s", [""])
        return Message.new_method_return(message)

    def add_message_handler(self, handler) -> None:
        self.handlers.append(handler)

    def remove_message_handler(self, handler) -> None:
        self.handlers.remove(handler)

    async def wait_for_disconnect(self) -> None:
        await self._disconnected

    def disconnect(self) -> None:
        self.connected = False
        if not self._disconnected.done():
            self._disconnected.set_result(None)

    def drop(self, error: Exception) -> None:
        self.connected = False
        self._disconnected.set_exception(error)

    def signal(self, member: str, signature: str = "", body: list | None = None,
               path: str = IFACE_PATH) -> None:
        message = Message.new_signal(path, WPA_SUPPLICANT_P2P_IFACE, member, signature, body or [])
        for handler in list(self.handlers):
            handler(message)

    def members(self) -> list[str]:
        return [m.member for m in self.sent]


def _device_props(name: str = "Phone") -> dict:
    return {
        "DeviceAddress": Variant("ay", PEER_MAC),
        "DeviceName": Variant("s", name),
        "PrimaryDeviceType": Variant("ay", b"\x00\x0a\x00\x50\xf2\x04\x00\x05"),
    }


async def _next_event(backend: WpaSupplicantBackend):
    events = backend.events()
    try:
        return await asyncio.wait_for(anext(events), 1)
    finally:
        await events.aclose()


# --- Interface names ---

@pytest.mark.parametrize("name", ["wlan0", "wlp2s0", "p2p-dev-wlan0"])
def test_valid_interface_names(name):
    assert validate_interface_name(name) == name


@pytest.mark.parametrize("name", ["", " ", "wlan 0", "a" * 16, "wl/an0", "wlan0:1", "..", None])
def test_invalid_interface_names(name):
    with pytest.raises(InvalidInterfaceError):
        validate_interface_name(name)


# --- Signal translation ---

def test_translate_device_found():
    event = translate_signal("DeviceFoundProperties", [f"{IFACE_PATH}/Peers/021122334455", _device_props()])
    assert event == PeerFound(device=P2pDevice(
        mac_address="02:11:22:33:44:55", device_name="Phone", primary_type="10-0050F204-5",
    ))


def test_translate_device_found_without_name():
    props = {"DeviceAddress": Variant("ay", PEER_MAC), "DeviceName": Variant("s", "")}
    event = translate_signal("DeviceFoundProperties", ["/peer", props])
    assert event.device.device_name is None
    assert event.device.primary_type is None


def test_translate_state_signals():
    assert translate_signal("FindStopped", []) == DiscoveryStopped()
    assert translate_signal("GroupStarted", [{"role": Variant("s", "GO")}]) == GroupCreated()
    assert translate_signal(
        "GONegotiationSuccess", [{"peer_device_addr": Variant("ay", PEER_MAC)}]
    ) == Connected(mac_address="02:11:22:33:44:55")


def test_translate_ignores_unmapped_signals():
    assert translate_signal("DeviceLost", ["/peer"]) is None


@pytest.mark.parametrize(
    "member, body",
    [
        ("DeviceFoundProperties", ["/peer"]),
        ("DeviceFoundProperties", ["/peer", {"DeviceName": Variant("s", "x")}]),
        ("DeviceFoundProperties", ["/peer", {"DeviceAddress": Variant("ay", b"\x01\x02")}]),
        ("GONegotiationSuccess", [{}]),
        ("GONegotiationSuccess", [{"peer_device_addr": Variant("ay", b"\x01")}]),
        ("GONegotiationSuccess", [{"peer_device_addr": Variant("s", "02:11:22:33:44:55")}]),
        ("DeviceFoundProperties", ["/peer", {"DeviceAddress": Variant("u", 6)}]),
        ("DeviceFoundProperties", ["/peer", {
            "DeviceAddress": Variant("ay", PEER_MAC),
            "PrimaryDeviceType": Variant("s", "1-0050F204-1"),
        }]),
    ],
)
def test_translate_malformed_payloads(member, body):
    with pytest.raises(DecodeError):
        translate_signal(member, body)


def test_decode_primary_type_length():
    with pytest.raises(DecodeError):
        decode_primary_type(b"\x00\x01")


# --- Backend over the fake bus ---

async def test_create_resolves_interface_and_subscribes():
    bus = FakeBus()
    backend = await WpaSupplicantBackend.create(bus, "wlan0")

    assert backend.interface_path == IFACE_PATH
    assert bus.members() == ["GetInterface", "AddMatch"]
    assert bus.sent[0].body == ["wlan0"]
    assert f"path='{IFACE_PATH}'" in bus.sent[1].body[0]
    assert len(bus.handlers) == 1


async def test_unknown_interface_is_invalid():
    bus = FakeBus()
    bus.errors["GetInterface"] = (
        "fi.w1.wpa_supplicant1.InterfaceUnknown", "wpa_supplicant knows nothing about this interface.",
    )
    with pytest.raises(InvalidInterfaceError):
        await WpaSupplicantBackend.create(bus, "wlan9")


async def test_discover_sends_find_and_reports_started():
    bus = FakeBus()
    backend = await WpaSupplicantBackend.create(bus, "wlan0")

    await backend.discover_peers()

    find = bus.sent[-1]
    assert find.member == "Find"
    assert find.path == IFACE_PATH
    assert find.signature == "a{sv}"
    assert await _next_event(backend) == DiscoveryStarted()


async def test_connect_targets_peer_object():
    bus = FakeBus()
    backend = await WpaSupplicantBackend.create(bus, "wlan0", wps_method="pin")

    await backend.connect("02:11:22:33:44:55")

    options = bus.sent[-1].body[0]
    assert bus.sent[-1].member == "Connect"
    assert options["peer"] == Variant("o", f"{IFACE_PATH}/Peers/021122334455")
    assert options["wps_method"] == Variant("s", "pin")


async def test_stop_and_group_calls():
    bus = FakeBus()
    backend = await WpaSupplicantBackend.create(bus, "wlan0")

    await backend.stop_discovery()
    await backend.create_group()

    assert bus.members()[-2:] == ["StopFind", "GroupAdd"]


async def test_daemon_error_is_backend_error_verbatim():
    bus = FakeBus()
    backend = await WpaSupplicantBackend.create(bus, "wlan0")
    bus.errors["GroupAdd"] = ("fi.w1.wpa_supplicant1.UnknownError", "failed to add group: busy")

    with pytest.raises(BackendError) as exc_info:
        await backend.create_group()

    assert exc_info.value.message == "failed to add group: busy"
    assert exc_info.value.error_name == "fi.w1.wpa_supplicant1.UnknownError"


async def test_bus_failure_is_transport_error():
    bus = FakeBus()
    backend = await WpaSupplicantBackend.create(bus, "wlan0")
    bus.raise_on_call = EOFError("socket closed")

    with pytest.raises(TransportError) as exc_info:
        await backend.discover_peers()
    assert isinstance(exc_info.value.cause, EOFError)


async def test_signals_become_events():
    bus = FakeBus()
    backend = await WpaSupplicantBackend.create(bus, "wlan0")

    bus.signal("DeviceFoundProperties", "oa{sv}", [f"{IFACE_PATH}/Peers/021122334455", _device_props()])
    bus.signal("FindStopped")
    bus.signal("FindStopped", path="/fi/w1/wpa_supplicant1/Interfaces/7")

    events = backend.events()
    first = await asyncio.wait_for(anext(events), 1)
    second = await asyncio.wait_for(anext(events), 1)
    await events.aclose()

    assert isinstance(first, PeerFound)
    assert first.device.mac_address == "02:11:22:33:44:55"
    assert second == DiscoveryStopped()


async def test_malformed_signal_is_dropped(caplog):
    bus = FakeBus()
    backend = await WpaSupplicantBackend.create(bus, "wlan0")

    bus.signal("GONegotiationSuccess", "a{sv}", [{}])
    bus.signal("GroupStarted", "a{sv}", [{}])

    assert await _next_event(backend) == GroupCreated()
    assert "Dropping malformed GONegotiationSuccess" in caplog.text


async def test_lost_connection_ends_events_with_transport_error():
    bus = FakeBus()
    backend = await WpaSupplicantBackend.create(bus, "wlan0")
    bus.drop(ConnectionResetError("reset by peer"))

    with pytest.raises(TransportError):
        await _next_event(backend)


async def test_close_ends_events_and_unsubscribes():
    bus = FakeBus()
    backend = await WpaSupplicantBackend.create(bus, "wlan0")

    await backend.close()

    assert bus.members()[-1] == "RemoveMatch"
    assert bus.handlers == []
    with pytest.raises(StopAsyncIteration):
        await _next_event(backend)


async def test_manager_new_with_shared_bus():
    bus = FakeBus()
    manager = await WifiP2pManager.new("wlan0", bus=bus)
    assert manager.connection() is bus

    channel = manager.initialize()
    events = channel.subscribe_events()
    await asyncio.wait_for(await channel.discover_peers(), 1)
    assert await asyncio.wait_for(events.recv(), 1) == DiscoveryStarted()

    await manager.close()
    # A bus passed in by the caller stays open
    assert bus.connected


async def test_manager_worker_stops_when_bus_drops():
    bus = FakeBus()
    manager = await WifiP2pManager.new("wlan0", bus=bus)
    channel = manager.initialize()

    bus.drop(ConnectionResetError("reset by peer"))
    await asyncio.wait_for(manager.worker.wait_closed(), 1)

    assert isinstance(manager.worker.fatal_error, TransportError)
    with pytest.raises(ChannelClosedError):
        await channel.create_group()
