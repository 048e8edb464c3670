"""Client connection adapter over the websockets asyncio server."""

from __future__ import annotations

import logging
from typing import Protocol

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from .exceptions import SendError

logger = logging.getLogger(__name__)

ClientMessage = str | bytes


class Connection(Protocol):
    """Duplex client channel consumed by the bridge loop."""

    async def receive(self) -> ClientMessage | None: ...

    async def send(self, text: str) -> None: ...

    async def close(self) -> None: ...


class WebSocketConnection:
    """Adapts a websockets ``ServerConnection`` to :class:`Connection`.

    Ping and pong frames are answered by websockets itself and never surface here.
    """

    def __init__(self, websocket: ServerConnection) -> None:
        self._websocket = websocket

    @property
    def remote_address(self) -> str:
        try:
            remote = self._websocket.remote_address
            if isinstance(remote, tuple):
                return f"{remote[0]}:{remote[1]}"
            return str(remote)
        except (OSError, AttributeError):
            return "unknown"

    @property
    def user_agent(self) -> str | None:
        request = self._websocket.request
        if request is None:
            return None
        return request.headers.get("User-Agent")

    async def receive(self) -> ClientMessage | None:
        """Return the next client message, or ``None`` once the connection is closed."""
        try:
            return await self._websocket.recv()
        except ConnectionClosedOK:
            logger.debug("Client %s closed the connection", self.remote_address)
        except ConnectionClosed as exc:
            logger.info("Connection to %s lost: %s", self.remote_address, exc)
        return None

    async def send(self, text: str) -> None:
        try:
            await self._websocket.send(text)
        except ConnectionClosed as exc:
            raise SendError(f"client {self.remote_address} disconnected: {exc}") from exc

    async def close(self) -> None:
        await self._websocket.close()
