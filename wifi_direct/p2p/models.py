"""Pydantic models for Wi-Fi Direct peers and events."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

MAC_LENGTH = 6


def normalize_mac(value: str | bytes) -> str:
    """
    Return the canonical ``aa:bb:cc:dd:ee:ff`` form of a MAC address.

    Accepts colon or dash separated hex strings and 6 raw bytes
    (the way wpa_supplicant reports ``DeviceAddress``).
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != MAC_LENGTH:
            raise ValueError(f"MAC address must be {MAC_LENGTH} bytes, got {len(value)}")
        return ":".join(f"{b:02x}" for b in value)

    if not isinstance(value, str):
        raise ValueError(f"MAC address must be a string or bytes, got {type(value).__name__}")

    parts = value.strip().replace("-", ":").split(":")
    if len(parts) != MAC_LENGTH or any(len(p) != 2 for p in parts):
        raise ValueError(f"Not a MAC address: {value!r}")
    try:
        octets = bytes(int(p, 16) for p in parts)
    except ValueError:
        raise ValueError(f"Not a MAC address: {value!r}") from None
    return ":".join(f"{b:02x}" for b in octets)


class P2pDevice(BaseModel):
    """Snapshot of a peer as reported by the daemon at discovery time."""
    model_config = ConfigDict(frozen=True)

    mac_address: str
    device_name: str | None = None
    primary_type: str | None = None  # WPS primary device type, e.g. "1-0050F204-1"

    @field_validator("mac_address", mode="before")
    @classmethod
    def _canonical_mac(cls, value):
        return normalize_mac(value)

    def same_peer(self, other: "P2pDevice") -> bool:
        """Two snapshots describe the same peer when their MACs match."""
        return self.mac_address == other.mac_address


# --- Events ---
# Every variant is an immutable value tagged by ``kind``.

class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class DiscoveryStarted(_Event):
    """The daemon accepted a discovery request and the scan is active."""
    kind: Literal["discovery_started"] = "discovery_started"


class DiscoveryStopped(_Event):
    """The daemon reported that the discovery scan ended."""
    kind: Literal["discovery_stopped"] = "discovery_stopped"


class GroupCreated(_Event):
    """A P2P group was formed."""
    kind: Literal["group_created"] = "group_created"


class Connected(_Event):
    """Link establishment with a peer succeeded."""
    kind: Literal["connected"] = "connected"
    mac_address: str

    @field_validator("mac_address", mode="before")
    @classmethod
    def _canonical_mac(cls, value):
        return normalize_mac(value)


class PeerFound(_Event):
    """The daemon reported a peer during discovery."""
    kind: Literal["peer_found"] = "peer_found"
    device: P2pDevice


P2pEvent = Annotated[
    Union[DiscoveryStarted, DiscoveryStopped, GroupCreated, Connected, PeerFound],
    Field(discriminator="kind"),
]

event_adapter: TypeAdapter[P2pEvent] = TypeAdapter(P2pEvent)
