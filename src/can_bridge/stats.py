"""Per-connection traffic counters."""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass
class BridgeStats:
    """Counters for a single bridge loop."""

    client_id: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    frames_to_client: int = 0
    frames_to_device: int = 0
    notices: int = 0
    heartbeats: int = 0
    malformed: int = 0
    reconnects: int = 0

    _started: float = field(default_factory=time.monotonic)

    def record_frame_to_client(self) -> None:
        self.frames_to_client += 1

    def record_frame_to_device(self) -> None:
        self.frames_to_device += 1

    def record_notice(self, *, heartbeat: bool = False) -> None:
        if heartbeat:
            self.heartbeats += 1
        else:
            self.notices += 1

    def record_malformed(self) -> None:
        self.malformed += 1

    def record_reconnect(self) -> None:
        self.reconnects += 1

    @property
    def uptime(self) -> float:
        """Seconds since the connection was accepted."""
        return time.monotonic() - self._started

    def summary(self) -> str:
        return (
            f"{self.client_id}: {self.uptime:.1f}s, "
            f"{self.frames_to_client} frames to client, "
            f"{self.frames_to_device} frames to device, "
            f"{self.notices} notices, {self.heartbeats} heartbeats, "
            f"{self.malformed} malformed, {self.reconnects} reconnects"
        )
