"""WebSocket bridge relaying CAN bus frames to browser clients."""

from .bridge import BridgeLoop
from .codec import BusFrame, Envelope, encode_envelope, format_frame, parse_frame
from .config import BridgeConfig
from .connection import Connection, WebSocketConnection
from .device import DeviceSession
from .exceptions import (
    CanBridgeError,
    ConfigError,
    DeviceError,
    FormatError,
    OpenError,
    ReadError,
    SendError,
    WriteError,
)
from .server import CanBridgeServer
from .types import BridgeState, DeviceState, Outcome

__all__ = [
    "BridgeConfig",
    "BridgeLoop",
    "BridgeState",
    "BusFrame",
    "CanBridgeError",
    "CanBridgeServer",
    "ConfigError",
    "Connection",
    "DeviceError",
    "DeviceSession",
    "DeviceState",
    "Envelope",
    "FormatError",
    "OpenError",
    "Outcome",
    "ReadError",
    "SendError",
    "WebSocketConnection",
    "WriteError",
    "encode_envelope",
    "format_frame",
    "parse_frame",
]
