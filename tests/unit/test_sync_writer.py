"""Tests for SyncFileWriter."""

from __future__ import annotations

import struct
from unittest.mock import MagicMock, patch

import pytest
from adbutils import AdbError

from web_adb.errors import BridgeError
from web_adb.push.writer import SYNC_DATA_MAX, SyncFileWriter


def _pack(value: int) -> bytes:
    return struct.pack("<I", value)


def _sent(conn: MagicMock) -> list[bytes]:
    return [bytes(call.args[0]) for call in conn.conn.sendall.call_args_list]


@pytest.fixture
def device() -> MagicMock:
    device = MagicMock()
    conn = device.open_transport.return_value
    conn.read_string.return_value = "OKAY"
    return device


class TestSyncFileWriter:
    """Tests for sync protocol framing."""

    def test_open_sends_send_frame(self, device: MagicMock) -> None:
        """Should enter sync mode and announce the path with its file mode."""
        conn = device.open_transport.return_value

        SyncFileWriter(device, "/sdcard/a.txt", 0o644)

        conn.send_command.assert_called_once_with("sync:")
        conn.check_okay.assert_called_once()
        target = b"/sdcard/a.txt,33188"
        assert _sent(conn) == [b"SEND" + _pack(len(target)) + target]

    def test_open_failure_closes_connection(self, device: MagicMock) -> None:
        conn = device.open_transport.return_value
        conn.check_okay.side_effect = AdbError("device offline")

        with pytest.raises(AdbError):
            SyncFileWriter(device, "/sdcard/a.txt")

        conn.close.assert_called_once()

    def test_write_splits_large_data(self, device: MagicMock) -> None:
        """Should never send a DATA frame over the sync limit."""
        conn = device.open_transport.return_value
        writer = SyncFileWriter(device, "/sdcard/a.bin")
        conn.conn.sendall.reset_mock()
        payload = b"x" * (SYNC_DATA_MAX + 10)

        writer.write(payload)

        assert _sent(conn) == [
            b"DATA" + _pack(SYNC_DATA_MAX),
            b"x" * SYNC_DATA_MAX,
            b"DATA" + _pack(10),
            b"x" * 10,
        ]
        assert writer.bytes_written == len(payload)

    def test_empty_write_sends_nothing(self, device: MagicMock) -> None:
        conn = device.open_transport.return_value
        writer = SyncFileWriter(device, "/sdcard/a.bin")
        conn.conn.sendall.reset_mock()

        writer.write(b"")

        assert _sent(conn) == []

    def test_close_sends_done_and_checks_status(self, device: MagicMock) -> None:
        conn = device.open_transport.return_value
        writer = SyncFileWriter(device, "/sdcard/a.txt")
        conn.conn.sendall.reset_mock()

        with patch("time.time", return_value=1700000000.5):
            writer.close()

        assert _sent(conn) == [b"DONE" + _pack(1700000000)]
        conn.read_string.assert_called_once_with(4)
        conn.close.assert_called_once()
        assert writer.closed

    def test_close_is_idempotent(self, device: MagicMock) -> None:
        conn = device.open_transport.return_value
        writer = SyncFileWriter(device, "/sdcard/a.txt")

        writer.close()
        writer.close()

        conn.close.assert_called_once()

    def test_close_raises_on_fail(self, device: MagicMock) -> None:
        """Should surface the device's failure reason."""
        conn = device.open_transport.return_value
        conn.read_string.side_effect = ["FAIL", "No space left on device"]
        conn.read.return_value = _pack(23)
        writer = SyncFileWriter(device, "/sdcard/a.txt")

        with pytest.raises(BridgeError) as exc_info:
            writer.close()

        assert exc_info.value.code == "ERR_SYNC_FAILED"
        assert "No space left on device" in exc_info.value.message
        conn.close.assert_called_once()

    def test_close_raises_on_unexpected_reply(self, device: MagicMock) -> None:
        conn = device.open_transport.return_value
        conn.read_string.return_value = "WHAT"
        writer = SyncFileWriter(device, "/sdcard/a.txt")

        with pytest.raises(BridgeError) as exc_info:
            writer.close()

        assert exc_info.value.code == "ERR_SYNC_FAILED"

    def test_write_after_close_fails(self, device: MagicMock) -> None:
        writer = SyncFileWriter(device, "/sdcard/a.txt")
        writer.close()

        with pytest.raises(ValueError):
            writer.write(b"late")
