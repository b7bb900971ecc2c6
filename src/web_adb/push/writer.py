"""Device write handles - streaming file writes over the adb sync protocol."""

from __future__ import annotations

import stat
import struct
import time
from typing import TYPE_CHECKING, Protocol

import structlog

from web_adb.errors import sync_failed_error

if TYPE_CHECKING:
    from adbutils import AdbConnection, AdbDevice

logger = structlog.get_logger()

# adbd rejects DATA frames larger than this.
SYNC_DATA_MAX = 64 * 1024
DEFAULT_FILE_MODE = 0o644

_LENGTH = struct.Struct("<I")


class DeviceWriter(Protocol):
    """Write-only destination for one file on one device."""

    def write(self, data: bytes) -> None: ...

    def close(self) -> None: ...


class SyncFileWriter:
    """Stream a file onto a device with SEND/DATA/DONE sync frames.

    The file is created or truncated when the first frame lands and its
    modification time is the time of close.
    """

    def __init__(self, device: AdbDevice, path: str, mode: int = DEFAULT_FILE_MODE) -> None:
        self.path = path
        self.mode = mode
        self.bytes_written = 0
        self._closed = False
        self._conn: AdbConnection = device.open_transport()
        try:
            self._conn.send_command("sync:")
            self._conn.check_okay()
            target = f"{path},{stat.S_IFREG | mode}".encode()
            self._send(b"SEND" + _LENGTH.pack(len(target)) + target)
        except Exception:
            self._conn.close()
            raise

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: bytes) -> None:
        if self._closed:
            raise ValueError("write to closed sync writer")
        view = memoryview(data)
        for offset in range(0, len(view), SYNC_DATA_MAX):
            frame = view[offset : offset + SYNC_DATA_MAX]
            self._send(b"DATA" + _LENGTH.pack(len(frame)))
            self._send(frame)
        self.bytes_written += len(data)

    def close(self) -> None:
        """Finish the transfer and wait for the device to acknowledge it.

        Raises:
            BridgeError: If the device answers FAIL
        """
        if self._closed:
            return
        self._closed = True
        try:
            self._send(b"DONE" + _LENGTH.pack(int(time.time())))
            status = self._conn.read_string(4)
            if status == "FAIL":
                (length,) = _LENGTH.unpack(self._conn.read(4))
                reason = self._conn.read_string(length)
                raise sync_failed_error(self.path, reason)
            if status != "OKAY":
                raise sync_failed_error(self.path, f"unexpected sync reply {status!r}")
            logger.debug("sync_write_done", path=self.path, size=self.bytes_written)
        finally:
            self._conn.close()

    def _send(self, payload: bytes | memoryview) -> None:
        self._conn.conn.sendall(payload)
