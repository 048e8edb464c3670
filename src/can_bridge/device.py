"""CAN transceiver session built on python-can."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import can

from .codec import BusFrame
from .exceptions import OpenError, ReadError, WriteError
from .types import DeviceState

logger = logging.getLogger(__name__)

BusFactory = Callable[..., can.BusABC]

STANDARD_ID_MAX = 0x7FF

_OPEN_ERRORS = (can.CanError, OSError, ValueError)


class _QueueListener(can.Listener):
    """Hands received messages (and the first bus error) to an asyncio queue.

    Runs in the notifier thread, so every hand-off goes through the loop.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._failed = False
        self.queue: asyncio.Queue[can.Message | Exception] = asyncio.Queue()

    def on_message_received(self, msg: can.Message) -> None:
        if self._failed:
            return
        self._loop.call_soon_threadsafe(self.queue.put_nowait, msg)

    def on_error(self, exc: Exception) -> None:
        # The notifier keeps polling a broken bus until stopped; report once
        if self._failed:
            return
        self._failed = True
        self._loop.call_soon_threadsafe(self.queue.put_nowait, exc)

    def stop(self) -> None:
        self._failed = True


class DeviceSession:
    """An open receive/send bus pair for one named CAN channel.

    Sessions are not reopened in place: once closed, callers open a new one.
    """

    def __init__(
        self,
        device: str,
        rx_bus: can.BusABC,
        tx_bus: can.BusABC,
        *,
        poll_timeout: float = 0.1,
        send_timeout: float | None = 0.1,
    ) -> None:
        self._device = device
        self._rx_bus = rx_bus
        self._tx_bus = tx_bus
        self._poll_timeout = poll_timeout
        self._send_timeout = send_timeout
        self._state = DeviceState.OPEN
        self._listener: _QueueListener | None = None
        self._notifier: can.Notifier | None = None

    @classmethod
    def open(
        cls,
        device: str,
        *,
        interface: str = "socketcan",
        bus_factory: BusFactory = can.Bus,
        **bus_kwargs: Any,
    ) -> DeviceSession:
        """Acquire a receive and a send handle for ``device``.

        Args:
            device: CAN channel name (e.g. ``can0``, ``vcan0``)
            interface: python-can interface name
            bus_factory: Callable creating a bus, ``can.Bus`` by default
            **bus_kwargs: Extra keyword arguments for the bus constructor

        Returns:
            An open session owning both handles

        Raises:
            OpenError: If either handle cannot be acquired
        """
        try:
            rx_bus = bus_factory(channel=device, interface=interface, **bus_kwargs)
        except _OPEN_ERRORS as exc:
            raise OpenError(device, str(exc) or type(exc).__name__) from exc

        try:
            tx_bus = bus_factory(channel=device, interface=interface, **bus_kwargs)
        except _OPEN_ERRORS as exc:
            _shutdown_bus(device, rx_bus)
            raise OpenError(device, str(exc) or type(exc).__name__) from exc

        logger.info("Opened CAN device %s (%s)", device, interface)
        return cls(device, rx_bus, tx_bus)

    @property
    def device(self) -> str:
        return self._device

    @property
    def state(self) -> DeviceState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is DeviceState.OPEN

    async def next_frame(self) -> BusFrame:
        """Wait for the next frame from the bus.

        Raises:
            ReadError: If the bus failed or the session is closed
        """
        if not self.is_open:
            raise ReadError(self._device, "session is closed")
        listener = self._listener or self._start_reader()

        item = await listener.queue.get()
        if isinstance(item, Exception):
            self.close()
            raise ReadError(self._device, str(item) or type(item).__name__) from item
        return BusFrame(id=item.arbitration_id, payload=bytes(item.data))

    def send(self, frame: BusFrame) -> None:
        """Write one frame to the bus.

        Raises:
            WriteError: If the frame is invalid for the bus or the write failed;
                the session is closed in either case
        """
        if not self.is_open:
            raise WriteError(self._device, "session is closed")

        try:
            message = can.Message(
                arbitration_id=frame.id,
                is_extended_id=frame.id > STANDARD_ID_MAX,
                data=frame.payload,
                check=True,
            )
            self._tx_bus.send(message, timeout=self._send_timeout)
        except (can.CanError, OSError, ValueError) as exc:
            self.close()
            raise WriteError(self._device, str(exc) or type(exc).__name__) from exc

    def close(self) -> None:
        """Release both handles. Safe to call more than once."""
        if self._state is DeviceState.CLOSED:
            return
        self._state = DeviceState.CLOSED

        if self._notifier is not None:
            self._notifier.stop(timeout=self._poll_timeout * 2)
            self._notifier = None
        _shutdown_bus(self._device, self._rx_bus)
        _shutdown_bus(self._device, self._tx_bus)
        logger.info("Closed CAN device %s", self._device)

    def _start_reader(self) -> _QueueListener:
        self._listener = _QueueListener(asyncio.get_running_loop())
        self._notifier = can.Notifier(self._rx_bus, [self._listener], timeout=self._poll_timeout)
        return self._listener


def _shutdown_bus(device: str, bus: can.BusABC) -> None:
    try:
        bus.shutdown()
    except (can.CanError, OSError):
        logger.debug("Error shutting down bus for %s", device, exc_info=True)
