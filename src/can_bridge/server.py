"""WebSocket server running one bridge loop per client."""

from __future__ import annotations

import asyncio
import logging
import socket

import can
from websockets.asyncio.server import Server, ServerConnection, serve

from .bridge import BridgeLoop
from .config import BridgeConfig
from .connection import WebSocketConnection
from .device import BusFactory, DeviceSession

logger = logging.getLogger(__name__)

_LOCAL_HOSTS = {"", "0.0.0.0", "::", "localhost", "127.0.0.1", "::1"}  # noqa: S104


def resolve_service_url(host: str, port: int) -> str:
    """Return the address clients should use to reach this bridge.

    Wildcard and loopback hosts are replaced by the first non-loopback IPv4
    address of the machine, if one can be found.
    """
    if host not in _LOCAL_HOSTS:
        return f"http://{host}:{port}"

    try:
        hostname = socket.gethostname()
        for addr_info in socket.getaddrinfo(hostname, None, socket.AF_INET):
            ip = str(addr_info[4][0])
            if not ip.startswith("127."):
                return f"http://{ip}:{port}"
    except OSError:
        # No usable network configuration, fall back to localhost
        pass
    return f"http://localhost:{port}"


class CanBridgeServer:
    """Accepts WebSocket clients and bridges each one to the configured CAN device."""

    def __init__(self, config: BridgeConfig, *, bus_factory: BusFactory = can.Bus) -> None:
        self._config = config
        self._bus_factory = bus_factory
        self._service_url = config.service_url or resolve_service_url(config.host, config.port)

        self._server: Server | None = None
        self._bridges: dict[ServerConnection, BridgeLoop] = {}
        self._shutdown_event = asyncio.Event()

    @property
    def port(self) -> int:
        """Port actually bound, useful when listening on port 0."""
        if self._server is None:
            return self._config.port
        for sock in self._server.sockets:
            return int(sock.getsockname()[1])
        return self._config.port

    @property
    def service_url(self) -> str:
        return self._service_url

    @property
    def active_connections(self) -> int:
        return len(self._bridges)

    async def start(self) -> None:
        """Start listening for client connections."""
        if self._server is not None:
            raise RuntimeError("server already running")

        logger.info(
            "Starting CAN bridge on %s:%d for %s (%s)",
            self._config.host,
            self._config.port,
            self._config.device,
            self._config.interface,
        )
        self._shutdown_event.clear()
        self._server = await serve(self._handle_connection, self._config.host, self._config.port)
        if self._config.port == 0:
            self._service_url = self._config.service_url or resolve_service_url(
                self._config.host, self.port
            )
        logger.info("Clients connect via %s", self._service_url)

    async def serve(self) -> None:
        """Start the server and run until stop() is called."""
        await self.start()
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop accepting new connections and close existing ones."""
        self._shutdown_event.set()
        if self._server is None:
            return

        logger.info("Stopping CAN bridge server")
        self._server.close()
        await self._server.wait_closed()
        self._server = None

    def _open_device(self) -> DeviceSession:
        return DeviceSession.open(
            self._config.device,
            interface=self._config.interface,
            bus_factory=self._bus_factory,
        )

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Handle the lifetime of a single client connection."""
        connection = WebSocketConnection(websocket)
        client_id = connection.remote_address
        logger.info(
            "Client connected: %s (%s)", client_id, connection.user_agent or "no user agent"
        )

        bridge = BridgeLoop(
            connection,
            self._open_device,
            device_name=self._config.device,
            service_url=self._service_url,
            heartbeat_interval=self._config.heartbeat_interval,
            client_id=client_id,
        )
        self._bridges[websocket] = bridge
        try:
            await bridge.run()
        finally:
            self._bridges.pop(websocket, None)
