"""Per-client event loop relaying frames between a connection and a CAN device."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

from .codec import BusFrame, Envelope, encode_envelope, format_frame, parse_frame
from .config import DEFAULT_HEARTBEAT_INTERVAL
from .connection import ClientMessage, Connection
from .device import DeviceSession
from .exceptions import FormatError, OpenError, ReadError, SendError, WriteError
from .stats import BridgeStats
from .types import BridgeState, Outcome

logger = logging.getLogger(__name__)

DeviceOpener = Callable[[], DeviceSession]

HEARTBEAT_NOTICE = "heartbeat"


class BridgeLoop:
    """Relays frames for one client connection and keeps the device session alive.

    Three event sources are multiplexed: client messages, device frames and a
    periodic timer. Exactly one event is handled per iteration. The timer sends
    a heartbeat notice and, while no device is open, retries opening it.
    """

    def __init__(
        self,
        connection: Connection,
        open_device: DeviceOpener,
        *,
        device_name: str,
        service_url: str,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        client_id: str = "client",
    ) -> None:
        """Initialize the bridge loop.

        Args:
            connection: Client channel owned by this loop
            open_device: Opens a fresh device session or raises OpenError
            device_name: Device name used in notices
            service_url: Address of this bridge, repeated in every envelope
            heartbeat_interval: Timer period in seconds
            client_id: Identifier used in log messages
        """
        self._connection = connection
        self._open_device = open_device
        self._device_name = device_name
        self._service_url = service_url
        self._heartbeat_interval = heartbeat_interval
        self._client_id = client_id

        self._session: DeviceSession | None = None
        self._sequence = 0
        self._next_tick = 0.0

        self._client_task: asyncio.Task[ClientMessage | None] | None = None
        self._device_task: asyncio.Task[BusFrame] | None = None
        self._timer_task: asyncio.Task[None] | None = None

        self.stats = BridgeStats(client_id=client_id)

    @property
    def state(self) -> BridgeState:
        return BridgeState.DEVICE_UP if self._session is not None else BridgeState.NO_DEVICE

    @property
    def sequence(self) -> int:
        """Sequence number of the last envelope sent."""
        return self._sequence

    async def run(self) -> None:
        """Run until the client disconnects or can no longer be written to."""
        self._next_tick = asyncio.get_running_loop().time() + self._heartbeat_interval
        try:
            error = self._try_open()
            if error is None:
                await self._send_notice(f"{self._device_name} connected")
            else:
                await self._send_notice(f"{self._device_name} unavailable: {error.reason}")

            while True:
                outcome = await self._handle_next_event()
                if outcome is Outcome.FATAL:
                    break
                if outcome is Outcome.RECONNECT:
                    self._drop_device()
        except SendError as exc:
            logger.info("Stopping bridge for %s: %s", self._client_id, exc)
        finally:
            await self._shutdown()
            logger.info("Bridge closed: %s", self.stats.summary())

    async def _handle_next_event(self) -> Outcome:
        """Wait for the first ready event source and handle exactly one event."""
        await asyncio.wait(self._arm(), return_when=asyncio.FIRST_COMPLETED)

        if self._timer_task is not None and self._timer_task.done():
            self._timer_task = None
            return await self._on_timer()

        # A failed read closes the session, so report it before writing client frames
        if self._device_task is not None and _failed(self._device_task):
            device_task = self._device_task
            self._device_task = None
            return await self._on_device_frame(device_task)

        if self._client_task is not None and self._client_task.done():
            task = self._client_task
            self._client_task = None
            return await self._on_client_message(task.result())

        if self._device_task is not None and self._device_task.done():
            device_task = self._device_task
            self._device_task = None
            return await self._on_device_frame(device_task)

        return Outcome.CONTINUE

    def _arm(self) -> list[asyncio.Task[Any]]:
        """Create a task for every idle event source and return all of them."""
        if self._client_task is None:
            self._client_task = asyncio.create_task(self._connection.receive())
        if self._session is not None and self._device_task is None:
            self._device_task = asyncio.create_task(self._session.next_frame())
        if self._timer_task is None:
            delay = max(0.0, self._next_tick - asyncio.get_running_loop().time())
            self._timer_task = asyncio.create_task(asyncio.sleep(delay))

        tasks: list[asyncio.Task[Any]] = [self._client_task, self._timer_task]
        if self._device_task is not None:
            tasks.append(self._device_task)
        return tasks

    async def _on_client_message(self, message: ClientMessage | None) -> Outcome:
        if message is None:
            logger.info("Client %s disconnected", self._client_id)
            return Outcome.FATAL

        if isinstance(message, bytes):
            logger.debug("Ignoring %d byte binary message from %s", len(message), self._client_id)
            return Outcome.CONTINUE

        try:
            frame = parse_frame(message.strip())
        except FormatError as exc:
            self.stats.record_malformed()
            logger.warning("Ignoring message from %s: %s", self._client_id, exc)
            return Outcome.CONTINUE

        if self._session is None:
            await self._send_notice(f"{self._device_name} unavailable, frame dropped")
            return Outcome.CONTINUE

        try:
            self._session.send(frame)
        except WriteError as exc:
            logger.warning("Write to %s failed: %s", self._device_name, exc.reason)
            await self._send_notice(f"{self._device_name} write failed: {exc.reason}")
            return Outcome.RECONNECT

        self.stats.record_frame_to_device()
        logger.debug("Client %s -> %s: %s", self._client_id, self._device_name, message)
        return Outcome.CONTINUE

    async def _on_device_frame(self, task: asyncio.Task[BusFrame]) -> Outcome:
        try:
            frame = task.result()
        except ReadError as exc:
            logger.warning("Lost %s: %s", self._device_name, exc.reason)
            await self._send_notice(f"{self._device_name} disconnected: {exc.reason}")
            return Outcome.RECONNECT

        data = format_frame(frame)
        await self._send(Envelope(self._next_sequence(), self._service_url, data=data))
        self.stats.record_frame_to_client()
        return Outcome.CONTINUE

    async def _on_timer(self) -> Outcome:
        now = asyncio.get_running_loop().time()
        self._next_tick += self._heartbeat_interval
        if self._next_tick <= now:
            # Missed ticks are skipped, not replayed
            self._next_tick = now + self._heartbeat_interval

        await self._send(
            Envelope(self._next_sequence(), self._service_url, notice=HEARTBEAT_NOTICE)
        )
        self.stats.record_notice(heartbeat=True)

        if self._session is None and self._try_open() is None:
            self.stats.record_reconnect()
            await self._send_notice(f"{self._device_name} connected")
        return Outcome.CONTINUE

    def _try_open(self) -> OpenError | None:
        try:
            self._session = self._open_device()
        except OpenError as exc:
            logger.debug("Cannot open %s: %s", self._device_name, exc.reason)
            return exc
        logger.info("Device %s available for %s", self._device_name, self._client_id)
        return None

    def _drop_device(self) -> None:
        if self._device_task is not None:
            self._discard_device_task(self._device_task)
            self._device_task = None
        if self._session is not None:
            self._session.close()
            self._session = None

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    async def _send_notice(self, notice: str) -> None:
        await self._send(Envelope(self._next_sequence(), self._service_url, notice=notice))
        self.stats.record_notice()

    async def _send(self, envelope: Envelope) -> None:
        await self._connection.send(encode_envelope(envelope))

    async def _shutdown(self) -> None:
        tasks = [
            task
            for task in (self._client_task, self._device_task, self._timer_task)
            if task is not None
        ]
        if self._device_task is not None:
            self._discard_device_task(self._device_task)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError, ReadError):
                await task
        self._client_task = self._device_task = self._timer_task = None

        if self._session is not None:
            self._session.close()
            self._session = None
        await self._connection.close()

    def _discard_device_task(self, task: asyncio.Task[BusFrame]) -> None:
        """Cancel a device read, logging a frame or error it already produced."""
        if not task.done():
            task.cancel()
            return
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Discarding read error from %s: %s", self._device_name, error)
        else:
            frame = format_frame(task.result())
            logger.debug("Dropping frame %s from %s", frame, self._device_name)


def _failed(task: asyncio.Task[Any]) -> bool:
    return task.done() and not task.cancelled() and task.exception() is not None
