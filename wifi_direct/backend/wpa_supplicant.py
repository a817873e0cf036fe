"""
wpa_supplicant backend over the D-Bus system bus.

Commands map onto the ``fi.w1.wpa_supplicant1.Interface.P2PDevice``
methods of the interface object; that interface's signals are translated
into ``P2pEvent`` values and handed out through ``events()``.
"""

import asyncio
import logging
from collections.abc import AsyncIterator

from dbus_fast import Message, MessageType, Variant
from dbus_fast.aio import MessageBus

from wifi_direct.backend.base import P2pBackend
from wifi_direct.config import (
    WPA_SUPPLICANT_DEST,
    WPA_SUPPLICANT_IFACE,
    WPA_SUPPLICANT_P2P_IFACE,
    WPA_SUPPLICANT_PATH,
    WPS_METHOD,
)
from wifi_direct.errors import (
    BackendError,
    DecodeError,
    InvalidInterfaceError,
    TransportError,
)
from wifi_direct.p2p.models import (
    Connected,
    DiscoveryStarted,
    DiscoveryStopped,
    GroupCreated,
    P2pDevice,
    P2pEvent,
    PeerFound,
    normalize_mac,
)

logger = logging.getLogger(__name__)

IFNAMSIZ = 16  # includes the trailing NUL
INTERFACE_UNKNOWN = "fi.w1.wpa_supplicant1.InterfaceUnknown"


def validate_interface_name(interface_name: str) -> str:
    """Check a Linux network interface name the way the kernel does."""
    if not isinstance(interface_name, str):
        raise InvalidInterfaceError(str(interface_name))
    if not interface_name or len(interface_name) >= IFNAMSIZ:
        raise InvalidInterfaceError(interface_name)
    if interface_name in (".", ".."):
        raise InvalidInterfaceError(interface_name)
    if any(c in "/:" or c.isspace() for c in interface_name):
        raise InvalidInterfaceError(interface_name)
    return interface_name


# --- Signal payload decoding ---

def _unwrap(value):
    return value.value if isinstance(value, Variant) else value


def _require(properties: dict, key: str, signal: str):
    if key not in properties:
        raise DecodeError(f"{signal}: missing {key!r}")
    return _unwrap(properties[key])


def _byte_array(value, key: str, signal: str) -> bytes:
    """Return an ``ay`` value as bytes, rejecting anything else."""
    if not isinstance(value, (bytes, bytearray, list)):
        raise DecodeError(f"{signal}: {key} is {type(value).__name__}, expected bytes")
    try:
        return bytes(value)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"{signal}: bad {key}: {e}") from e


def decode_primary_type(raw: bytes) -> str:
    """Render an 8-byte WPS primary device type as ``category-OUI-subcategory``."""
    if len(raw) != 8:
        raise DecodeError(f"primary device type must be 8 bytes, got {len(raw)}")
    category = int.from_bytes(raw[0:2], "big")
    subcategory = int.from_bytes(raw[6:8], "big")
    return f"{category}-{raw[2:6].hex().upper()}-{subcategory}"


def decode_device(properties: dict) -> P2pDevice:
    """Build a P2pDevice from a DeviceFoundProperties dictionary."""
    address = _require(properties, "DeviceAddress", "DeviceFoundProperties")
    try:
        mac = normalize_mac(_byte_array(address, "DeviceAddress", "DeviceFoundProperties"))
    except ValueError as e:
        raise DecodeError(f"DeviceFoundProperties: bad DeviceAddress: {e}") from e

    name = _unwrap(properties.get("DeviceName")) or None
    if name is not None and not isinstance(name, str):
        raise DecodeError(f"DeviceFoundProperties: DeviceName is {type(name).__name__}")

    primary_type = None
    raw_type = _unwrap(properties.get("PrimaryDeviceType"))
    if raw_type:
        primary_type = decode_primary_type(
            _byte_array(raw_type, "PrimaryDeviceType", "DeviceFoundProperties")
        )

    return P2pDevice(mac_address=mac, device_name=name, primary_type=primary_type)


def translate_signal(member: str, body: list) -> P2pEvent | None:
    """
    Translate one P2PDevice signal into an event.

    Returns None for signals that have no event counterpart and raises
    DecodeError when the payload does not have the expected shape.
    """
    if member == "DeviceFoundProperties":
        if len(body) != 2 or not isinstance(body[1], dict):
            raise DecodeError("DeviceFoundProperties: expected (o, a{sv})")
        return PeerFound(device=decode_device(body[1]))

    if member == "FindStopped":
        return DiscoveryStopped()

    if member == "GroupStarted":
        return GroupCreated()

    if member == "GONegotiationSuccess":
        if len(body) != 1 or not isinstance(body[0], dict):
            raise DecodeError("GONegotiationSuccess: expected (a{sv})")
        address = _require(body[0], "peer_device_addr", "GONegotiationSuccess")
        address = _byte_array(address, "peer_device_addr", "GONegotiationSuccess")
        try:
            return Connected(mac_address=address)
        except ValueError as e:
            raise DecodeError(f"GONegotiationSuccess: bad peer_device_addr: {e}") from e

    return None


class WpaSupplicantBackend(P2pBackend):
    """P2P backend bound to one wpa_supplicant-managed interface."""

    def __init__(
        self, bus: MessageBus, interface_path: str, wps_method: str = WPS_METHOD
    ) -> None:
        self._bus = bus
        self._interface_path = interface_path
        self._wps_method = wps_method
        self._events: asyncio.Queue[P2pEvent] = asyncio.Queue()
        self._match_rule = (
            f"type='signal',sender='{WPA_SUPPLICANT_DEST}',"
            f"interface='{WPA_SUPPLICANT_P2P_IFACE}',path='{interface_path}'"
        )
        self._listening = False
        self._closed = False

    @classmethod
    async def create(
        cls, bus: MessageBus, interface_name: str, wps_method: str = WPS_METHOD
    ) -> "WpaSupplicantBackend":
        """Resolve the interface object path and start listening for signals."""
        validate_interface_name(interface_name)
        try:
            interface_path = await cls._get_interface_path(bus, interface_name)
        except BackendError as e:
            if e.error_name == INTERFACE_UNKNOWN:
                raise InvalidInterfaceError(interface_name) from e
            raise
        logger.info(f"wpa_supplicant manages {interface_name} at {interface_path}")

        backend = cls(bus, interface_path, wps_method)
        await backend.start_listening()
        return backend

    @property
    def interface_path(self) -> str:
        return self._interface_path

    @staticmethod
    async def _call(bus: MessageBus, message: Message) -> list:
        """Send a method call and return the reply body."""
        try:
            reply = await bus.call(message)
        except Exception as e:
            raise TransportError(f"D-Bus call {message.member} failed: {e}", e) from e

        if reply is None:
            raise TransportError(f"D-Bus call {message.member} got no reply")
        if reply.message_type == MessageType.ERROR:
            text = reply.body[0] if reply.body and isinstance(reply.body[0], str) else ""
            raise BackendError(text or reply.error_name, reply.error_name)
        return reply.body

    @classmethod
    async def _get_interface_path(cls, bus: MessageBus, interface_name: str) -> str:
        # The wpa_supplicant root object exposes GetInterface(ifname) -> object path
        body = await cls._call(bus, Message(
            destination=WPA_SUPPLICANT_DEST,
            path=WPA_SUPPLICANT_PATH,
            interface=WPA_SUPPLICANT_IFACE,
            member="GetInterface",
            signature="s",
            body=[interface_name],
        ))
        if not body or not isinstance(body[0], str):
            raise DecodeError("GetInterface: expected an object path")
        return body[0]

    async def _p2p_call(self, member: str, signature: str = "", body: list | None = None) -> list:
        return await self._call(self._bus, Message(
            destination=WPA_SUPPLICANT_DEST,
            path=self._interface_path,
            interface=WPA_SUPPLICANT_P2P_IFACE,
            member=member,
            signature=signature,
            body=body or [],
        ))

    async def _bus_driver_call(self, member: str) -> None:
        await self._call(self._bus, Message(
            destination="org.freedesktop.DBus",
            path="/org/freedesktop/DBus",
            interface="org.freedesktop.DBus",
            member=member,
            signature="s",
            body=[self._match_rule],
        ))

    # --- Signals ---

    async def start_listening(self) -> None:
        """Subscribe to the P2PDevice signals of our interface."""
        if self._listening:
            return
        self._bus.add_message_handler(self._on_message)
        await self._bus_driver_call("AddMatch")
        self._listening = True

    def _on_message(self, message: Message) -> None:
        if message.message_type != MessageType.SIGNAL:
            return
        if message.interface != WPA_SUPPLICANT_P2P_IFACE or message.path != self._interface_path:
            return
        try:
            event = translate_signal(message.member, message.body)
        except DecodeError as e:
            logger.warning(f"Dropping malformed {message.member} signal: {e}")
            return
        if event is None:
            logger.debug(f"Ignoring P2P signal {message.member}")
            return
        self._emit(event)

    def _emit(self, event: P2pEvent) -> None:
        try:
            self._events.put_nowait(event)
        except asyncio.QueueShutDown:
            logger.debug(f"Backend closed, dropping {event.kind}")

    async def events(self) -> AsyncIterator[P2pEvent]:
        disconnect = asyncio.ensure_future(self._bus.wait_for_disconnect())
        get: asyncio.Future | None = None
        try:
            while True:
                get = asyncio.ensure_future(self._events.get())
                done, _ = await asyncio.wait(
                    {get, disconnect}, return_when=asyncio.FIRST_COMPLETED
                )
                if get in done:
                    try:
                        event = get.result()
                    except asyncio.QueueShutDown:
                        return
                    yield event
                    continue

                if self._closed:
                    return
                error = disconnect.exception()
                raise TransportError(f"D-Bus connection lost: {error or 'disconnected'}", error)
        finally:
            if get is not None:
                get.cancel()
            disconnect.cancel()

    # --- Commands ---

    async def discover_peers(self) -> None:
        # Maps to p2p_find; options follow wpa_supplicant's a{sv} signature
        await self._p2p_call("Find", "a{sv}", [{}])
        # wpa_supplicant has no "find started" signal; acceptance means the scan is running
        self._emit(DiscoveryStarted())

    async def stop_discovery(self) -> None:
        # wpa_supplicant acknowledges StopFind even when no scan is running
        await self._p2p_call("StopFind")

    async def connect(self, device_address: str) -> None:
        peer_path = f"{self._interface_path}/Peers/{device_address.replace(':', '').lower()}"
        options = {
            "peer": Variant("o", peer_path),
            "wps_method": Variant("s", self._wps_method),
        }
        await self._p2p_call("Connect", "a{sv}", [options])

    async def create_group(self) -> None:
        await self._p2p_call("GroupAdd", "a{sv}", [{}])

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._listening:
            self._bus.remove_message_handler(self._on_message)
            self._listening = False
            if self._bus.connected:
                try:
                    await self._bus_driver_call("RemoveMatch")
                except (TransportError, BackendError) as e:
                    logger.debug(f"RemoveMatch failed during close: {e}")
        self._events.shutdown()
