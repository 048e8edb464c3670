"""Shared pytest fixtures for can-bridge tests."""

import asyncio
import json
import uuid
from collections.abc import Callable, Iterator
from typing import Any

import can
import pytest
from can_bridge import BridgeLoop, BusFrame, OpenError, ReadError, SendError, WriteError

DEVICE_NAME = "vcan0"
SERVICE_URL = "http://bridge.test:3000"


class FakeConnection:
    """In-memory client connection recording every envelope sent."""

    def __init__(self, *, fail_after: int | None = None) -> None:
        self.incoming: asyncio.Queue[str | bytes | None] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._fail_after = fail_after

    async def receive(self) -> str | bytes | None:
        return await self.incoming.get()

    async def send(self, text: str) -> None:
        if self._fail_after is not None and len(self.sent) >= self._fail_after:
            raise SendError("client gone")
        self.sent.append(json.loads(text))

    async def close(self) -> None:
        self.closed = True

    def notices(self, *, heartbeats: bool = False) -> list[str]:
        return [
            message["notice"]
            for message in self.sent
            if message["notice"] is not None and (heartbeats or message["notice"] != "heartbeat")
        ]


class FakeDevice:
    """Device session stand-in fed through an asyncio queue.

    Queue an exception to simulate a read failure.
    """

    def __init__(self) -> None:
        self.frames: asyncio.Queue[BusFrame | Exception] = asyncio.Queue()
        self.written: list[BusFrame] = []
        self.write_error: str | None = None
        self.closed = False

    @property
    def is_open(self) -> bool:
        return not self.closed

    async def next_frame(self) -> BusFrame:
        item = await self.frames.get()
        if isinstance(item, Exception):
            self.closed = True
            raise ReadError(DEVICE_NAME, str(item))
        return item

    def send(self, frame: BusFrame) -> None:
        if self.closed:
            raise WriteError(DEVICE_NAME, "session is closed")
        if self.write_error is not None:
            self.closed = True
            raise WriteError(DEVICE_NAME, self.write_error)
        self.written.append(frame)

    def close(self) -> None:
        self.closed = True


class FakeOpener:
    """Returns the queued devices in order, raising for queued errors.

    Once exhausted the device is reported as missing.
    """

    def __init__(self, *results: FakeDevice | OpenError) -> None:
        self._results = list(results)
        self.calls = 0

    def __call__(self) -> FakeDevice:
        self.calls += 1
        result = self._results.pop(0) if self._results else OpenError(DEVICE_NAME, "no such device")
        if isinstance(result, OpenError):
            raise result
        return result


@pytest.fixture
def connection() -> FakeConnection:
    """Create a client connection that never fails."""
    return FakeConnection()


@pytest.fixture
def device() -> FakeDevice:
    """Create a healthy fake device."""
    return FakeDevice()


@pytest.fixture
def make_bridge() -> Callable[..., BridgeLoop]:
    """Factory for bridge loops wired to fakes."""

    def _make(
        connection: FakeConnection,
        opener: FakeOpener,
        *,
        heartbeat_interval: float = 10.0,
    ) -> BridgeLoop:
        return BridgeLoop(
            connection,
            opener,  # type: ignore[arg-type]
            device_name=DEVICE_NAME,
            service_url=SERVICE_URL,
            heartbeat_interval=heartbeat_interval,
            client_id="test-client",
        )

    return _make


@pytest.fixture
def channel_name() -> str:
    """Unique python-can virtual channel so tests do not see each other's traffic."""
    return f"can-bridge-test-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def peer(channel_name: str) -> Iterator[can.BusABC]:
    """Another node on the virtual bus."""
    bus = can.Bus(interface="virtual", channel=channel_name)
    yield bus
    bus.shutdown()
