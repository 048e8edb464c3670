"""Bridge configuration."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from .exceptions import ConfigError

DEFAULT_DEVICE = "can0"
DEFAULT_INTERFACE = "socketcan"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000
DEFAULT_HEARTBEAT_INTERVAL = 1.0

ENV_DEVICE = "CAN_BRIDGE_DEVICE"
ENV_INTERFACE = "CAN_BRIDGE_INTERFACE"
ENV_HOST = "CAN_BRIDGE_HOST"
ENV_PORT = "CAN_BRIDGE_PORT"


@dataclass(frozen=True, slots=True)
class BridgeConfig:
    """Settings shared by every bridge loop of a server."""

    device: str = DEFAULT_DEVICE
    interface: str = DEFAULT_INTERFACE
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL
    service_url: str | None = None

    def __post_init__(self) -> None:
        if not self.device:
            raise ConfigError("device name must not be empty")
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"port out of range: {self.port}")
        if self.heartbeat_interval <= 0:
            raise ConfigError(
                f"heartbeat interval must be positive, got {self.heartbeat_interval}"
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> BridgeConfig:
        """Build a configuration from ``CAN_BRIDGE_*`` environment variables.

        Unset or empty variables fall back to the defaults.
        """
        env = os.environ if environ is None else environ

        port_text = env.get(ENV_PORT) or str(DEFAULT_PORT)
        try:
            port = int(port_text)
        except ValueError as exc:
            raise ConfigError(f"{ENV_PORT} is not a port number: {port_text!r}") from exc

        return cls(
            device=env.get(ENV_DEVICE) or DEFAULT_DEVICE,
            interface=env.get(ENV_INTERFACE) or DEFAULT_INTERFACE,
            host=env.get(ENV_HOST) or DEFAULT_HOST,
            port=port,
        )
