"""Type definitions shared by the bridge components."""

from enum import Enum
from typing import TypedDict


class DeviceState(Enum):
    """Lifecycle of a device session."""

    CLOSED = "closed"
    OPEN = "open"


class BridgeState(Enum):
    """Device availability as seen by one bridge loop."""

    NO_DEVICE = "noDevice"
    DEVICE_UP = "deviceUp"


class Outcome(Enum):
    """Result of handling a single bridge loop event."""

    CONTINUE = "continue"
    RECONNECT = "reconnect"  # device lost, drop the session
    FATAL = "fatal"  # client gone, stop the loop


class EnvelopeMessage(TypedDict):
    """JSON envelope sent to the client."""

    sequence: int
    serviceUrl: str
    data: str | None
    notice: str | None
