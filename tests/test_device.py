"""Tests for the python-can device session, using the virtual interface."""

import asyncio
from unittest import mock

import can
import pytest
from can_bridge import BusFrame, DeviceSession, DeviceState, OpenError, ReadError, WriteError


class FailingBus(can.BusABC):
    """Bus whose every read and write fails, like an interface that went down."""

    def __init__(self, channel, **kwargs):
        super().__init__(channel=channel, **kwargs)
        self.channel_info = f"failing bus {channel}"

    def _recv_internal(self, timeout):
        raise can.CanOperationError("interface went down")

    def send(self, msg, timeout=None):
        raise can.CanOperationError("interface went down")


def test_open_acquires_both_handles(channel_name):
    session = DeviceSession.open(channel_name, interface="virtual")
    try:
        assert session.is_open
        assert session.state is DeviceState.OPEN
        assert session.device == channel_name
    finally:
        session.close()

    assert not session.is_open
    assert session.state is DeviceState.CLOSED


def test_open_failure_raises_open_error():
    def missing_device(**kwargs):
        raise can.CanInitializationError("No such device")

    with pytest.raises(OpenError, match="can7: No such device") as exc_info:
        DeviceSession.open("can7", bus_factory=missing_device)

    assert exc_info.value.device == "can7"


def test_open_releases_first_handle_when_second_fails():
    rx_bus = mock.MagicMock(spec=can.BusABC)
    factory = mock.Mock(side_effect=[rx_bus, OSError(16, "Device or resource busy")])

    with pytest.raises(OpenError, match="busy"):
        DeviceSession.open("can0", bus_factory=factory)

    assert factory.call_count == 2
    rx_bus.shutdown.assert_called_once_with()


def test_next_frame_receives_bus_traffic(channel_name, peer):
    async def scenario():
        session = DeviceSession.open(channel_name, interface="virtual")
        try:
            peer.send(can.Message(arbitration_id=0x1A3, is_extended_id=False, data=b"\xde\xad"))
            peer.send(can.Message(arbitration_id=0x18DAF110, is_extended_id=True, data=b""))
            first = await asyncio.wait_for(session.next_frame(), timeout=2.0)
            second = await asyncio.wait_for(session.next_frame(), timeout=2.0)
        finally:
            session.close()
        return first, second

    first, second = asyncio.run(scenario())

    assert first == BusFrame(0x1A3, b"\xde\xad")
    assert second == BusFrame(0x18DAF110, b"")


def test_send_reaches_bus(channel_name, peer):
    session = DeviceSession.open(channel_name, interface="virtual")
    try:
        session.send(BusFrame(0x123, b"\x01\x02"))
        session.send(BusFrame(0x18DAF110, b"\x02\x10\x03"))
        standard = peer.recv(timeout=2.0)
        extended = peer.recv(timeout=2.0)
    finally:
        session.close()

    assert standard is not None
    assert standard.arbitration_id == 0x123
    assert not standard.is_extended_id
    assert bytes(standard.data) == b"\x01\x02"

    assert extended is not None
    assert extended.arbitration_id == 0x18DAF110
    assert extended.is_extended_id
    assert bytes(extended.data) == b"\x02\x10\x03"


@pytest.mark.parametrize(
    "frame",
    [BusFrame(0x123, bytes(9)), BusFrame(0x20000000, b"\x00")],
    ids=["oversize-payload", "oversize-id"],
)
def test_send_invalid_frame_closes_session(channel_name, frame):
    session = DeviceSession.open(channel_name, interface="virtual")

    with pytest.raises(WriteError):
        session.send(frame)

    assert session.state is DeviceState.CLOSED


def test_send_error_closes_session():
    session = DeviceSession.open("can3", bus_factory=FailingBus)

    with pytest.raises(WriteError, match="interface went down"):
        session.send(BusFrame(0x1, b"\x00"))

    assert not session.is_open


def test_read_error_closes_session():
    async def scenario():
        session = DeviceSession.open("can3", bus_factory=FailingBus)
        with pytest.raises(ReadError, match="interface went down"):
            await asyncio.wait_for(session.next_frame(), timeout=2.0)
        return session

    session = asyncio.run(scenario())

    assert session.state is DeviceState.CLOSED


def test_closed_session_rejects_io(channel_name):
    session = DeviceSession.open(channel_name, interface="virtual")
    session.close()
    session.close()

    with pytest.raises(WriteError, match="closed"):
        session.send(BusFrame(0x1, b""))
    with pytest.raises(ReadError, match="closed"):
        asyncio.run(session.next_frame())
