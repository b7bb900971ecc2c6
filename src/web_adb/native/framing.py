"""Chrome Native Messaging framing.

Each message is a 4-byte little-endian length followed by that many bytes
of UTF-8 JSON. See https://developer.chrome.com/docs/extensions/develop/concepts/native-messaging
"""

from __future__ import annotations

import json
import struct
from typing import Any, BinaryIO

import structlog

from web_adb.errors import invalid_message_error, message_too_large_error

logger = structlog.get_logger()

HEADER = struct.Struct("<I")
# Chrome refuses host-to-extension messages over 1 MB.
MAX_OUTGOING_MESSAGE_BYTES = 1024 * 1024


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    buf = bytearray()
    while len(buf) < size:
        chunk = stream.read(size - len(buf))
        if not chunk:
            break
        buf.extend(chunk)
    return bytes(buf)


def read_message(stream: BinaryIO) -> bytes | None:
    """Read one framed message.

    Returns:
        The message body, b"" for a zero-length frame, or None on a clean EOF

    Raises:
        BridgeError: If the stream ends inside a frame
    """
    header = _read_exact(stream, HEADER.size)
    if not header:
        return None
    if len(header) < HEADER.size:
        raise invalid_message_error("truncated length header")

    (length,) = HEADER.unpack(header)
    if length == 0:
        logger.warning("native_message_empty")
        return b""

    body = _read_exact(stream, length)
    if len(body) < length:
        raise invalid_message_error(f"expected {length} bytes, got {len(body)}")
    return body


def encode_message(payload: Any) -> bytes:
    """Serialize a JSON-compatible payload into a message body."""
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def write_message(stream: BinaryIO, body: bytes) -> None:
    """Write one framed message and flush it.

    Raises:
        BridgeError: ERR_MESSAGE_TOO_LARGE if body exceeds the outgoing limit
    """
    if len(body) > MAX_OUTGOING_MESSAGE_BYTES:
        raise message_too_large_error(len(body), MAX_OUTGOING_MESSAGE_BYTES)
    stream.write(HEADER.pack(len(body)))
    stream.write(body)
    stream.flush()
