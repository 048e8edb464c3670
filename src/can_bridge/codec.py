"""Text encoding of bus frames and the JSON envelope sent to clients."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass

from .exceptions import FormatError
from .types import EnvelopeMessage

FRAME_SEPARATOR = "#"

_HEX_RE = re.compile(r"[0-9A-Fa-f]+")


@dataclass(frozen=True, slots=True)
class BusFrame:
    """A single CAN frame: arbitration id plus data bytes."""

    id: int
    payload: bytes = b""

    def __post_init__(self) -> None:
        if self.id < 0:
            raise ValueError(f"frame id must be non-negative, got {self.id}")


@dataclass(frozen=True, slots=True)
class Envelope:
    """Message relayed to the client, either frame data or a status notice."""

    sequence: int
    service_url: str
    data: str | None = None
    notice: str | None = None

    def to_message(self) -> EnvelopeMessage:
        return {
            "sequence": self.sequence,
            "serviceUrl": self.service_url,
            "data": self.data,
            "notice": self.notice,
        }


def parse_frame(text: str) -> BusFrame:
    """Parse ``<hex-id>#<hex-payload>`` into a frame.

    Hex digits are case-insensitive. The payload may be empty but must consist
    of whole bytes.

    Raises:
        FormatError: If the text does not follow the frame syntax
    """
    if not text:
        raise FormatError(text, "empty message")

    id_text, separator, payload_text = text.partition(FRAME_SEPARATOR)
    if not separator:
        raise FormatError(text, f"missing '{FRAME_SEPARATOR}' separator")
    if not id_text:
        raise FormatError(text, "missing frame id")
    if not _HEX_RE.fullmatch(id_text):
        raise FormatError(text, f"frame id {id_text!r} is not hexadecimal")
    if payload_text and not _HEX_RE.fullmatch(payload_text):
        raise FormatError(text, f"payload {payload_text!r} is not hexadecimal")
    if len(payload_text) % 2:
        raise FormatError(text, "payload has an odd number of hex digits")

    return BusFrame(id=int(id_text, 16), payload=bytes.fromhex(payload_text))


def format_frame(frame: BusFrame) -> str:
    return f"{frame.id:x}{FRAME_SEPARATOR}{frame.payload.hex()}"


def encode_envelope(envelope: Envelope) -> str:
    """Serialize an envelope to JSON; unset ``data``/``notice`` become ``null``."""
    return json.dumps(envelope.to_message())
