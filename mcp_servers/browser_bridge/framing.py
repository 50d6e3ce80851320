"""Length-prefixed framing for the host <-> browser channel.

Wire layout matches Chrome Native Messaging: a 4-byte little-endian unsigned length
followed by exactly that many bytes of UTF-8 JSON.
"""

from __future__ import annotations

import json
import logging
import struct
from typing import Any

from .errors import PayloadTooLargeError, ProtocolError

HEADER = struct.Struct("<I")
HEADER_SIZE = HEADER.size

logger = logging.getLogger("mcp.bridge.framing")


def encode_payload(msg: dict[str, Any]) -> bytes:
    return json.dumps(msg, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def encode_frame(msg: dict[str, Any], *, max_payload_bytes: int) -> bytes:
    """Serialize one envelope into a frame, refusing oversize payloads up front."""
    raw = encode_payload(msg)
    if len(raw) > max_payload_bytes:
        raise PayloadTooLargeError(len(raw), max_payload_bytes)
    return HEADER.pack(len(raw)) + raw


class FrameDecoder:
    """Reassembly buffer: feed arbitrary chunks, get back complete payloads in order.

    Raises ProtocolError when the stream can no longer be trusted (declared length
    over the payload limit, or too many unframed bytes buffered). Byte alignment is
    lost at that point, so the caller must drop the connection.
    """

    def __init__(self, *, max_payload_bytes: int, max_buffer_bytes: int) -> None:
        self._max_payload = int(max_payload_bytes)
        self._max_buffer = int(max_buffer_bytes)
        self._buf = bytearray()
        self._expected: int | None = None

    @property
    def buffered(self) -> int:
        return len(self._buf)

    def feed(self, chunk: bytes) -> list[bytes]:
        if chunk:
            self._buf.extend(chunk)

        out: list[bytes] = []
        while True:
            if self._expected is None:
                if len(self._buf) < HEADER_SIZE:
                    break
                (length,) = HEADER.unpack_from(self._buf, 0)
                if length > self._max_payload:
                    self._buf.clear()
                    raise ProtocolError(f"Inbound frame length {length} exceeds limit {self._max_payload}")
                del self._buf[:HEADER_SIZE]
                self._expected = int(length)
            if len(self._buf) < self._expected:
                break
            out.append(bytes(self._buf[: self._expected]))
            del self._buf[: self._expected]
            self._expected = None

        # Only bytes not yet part of a complete frame count against the cap.
        pending = len(self._buf) + (HEADER_SIZE if self._expected is not None else 0)
        if pending > self._max_buffer:
            self._buf.clear()
            self._expected = None
            raise ProtocolError(f"Reassembly buffer overflow: {pending} unframed bytes (cap {self._max_buffer})")
        return out


def decode_envelope(payload: bytes) -> dict[str, Any] | None:
    """Parse one frame payload. A bad payload keeps alignment, so it is skipped, not fatal."""
    try:
        obj = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("dropping undecodable frame (%d bytes): %s", len(payload), exc)
        return None
    if not isinstance(obj, dict):
        logger.warning("dropping non-object frame (%s)", type(obj).__name__)
        return None
    return obj
