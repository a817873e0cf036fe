"""Exception types raised by the Wi-Fi Direct client."""


class P2pError(Exception):
    """Base class for every error this package raises."""


class TransportError(P2pError):
    """The D-Bus connection or a method call on it failed."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class DecodeError(P2pError):
    """A daemon payload could not be decoded."""


class ChannelClosedError(P2pError):
    """The command queue, the worker or a completion handle is gone."""

    def __init__(self, what: str = "manager") -> None:
        super().__init__(f"channel closed: {what}")
        self.what = what


class InvalidInterfaceError(P2pError):
    """The wireless interface name given to the manager is unusable."""

    def __init__(self, interface_name: str) -> None:
        super().__init__(f"invalid interface name: {interface_name!r}")
        self.interface_name = interface_name


class BackendError(P2pError):
    """The daemon rejected an operation.

    ``message`` is the daemon's diagnostic, kept exactly as received.
    """

    def __init__(self, message: str, error_name: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.error_name = error_name

    def __str__(self) -> str:
        if self.error_name:
            return f"backend error ({self.error_name}): {self.message}"
        return f"backend error: {self.message}"


class EventsLaggedError(P2pError):
    """A subscriber fell behind and the oldest events were dropped."""

    def __init__(self, missed: int) -> None:
        super().__init__(f"subscriber lagged behind, missed {missed} event(s)")
        self.missed = missed
