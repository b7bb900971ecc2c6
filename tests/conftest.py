"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Generator
from unittest.mock import MagicMock, patch

import pytest


class FakeWriter:
    """In-memory device write handle."""

    def __init__(self, fail_write: bool = False, fail_close: bool = False) -> None:
        self.data = bytearray()
        self.writes = 0
        self.closed = False
        self.fail_write = fail_write
        self.fail_close = fail_close

    def write(self, data: bytes) -> None:
        if self.fail_write:
            raise OSError("device disconnected")
        self.writes += 1
        self.data.extend(data)

    def close(self) -> None:
        self.closed = True
        if self.fail_close:
            raise OSError("close failed")


class FakeOpener:
    """Writer opener handing out FakeWriters, optionally failing some serials."""

    def __init__(self, fail_open: set[str] | None = None) -> None:
        self.writers: dict[str, FakeWriter] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_open = fail_open or set()

    async def __call__(self, serial: str, path: str) -> FakeWriter:
        self.calls.append((serial, path))
        if serial in self.fail_open:
            raise OSError(f"cannot open {path}")
        writer = FakeWriter()
        self.writers[serial] = writer
        return writer


@pytest.fixture
def fake_opener() -> FakeOpener:
    return FakeOpener()


@pytest.fixture
def mock_adb() -> Generator[MagicMock, None, None]:
    """Mock adbutils for unit tests."""
    with patch("adbutils.adb") as mock:
        mock_device = MagicMock()
        mock_device.serial = "emulator-5554"
        mock_device.prop.get.side_effect = {
            "ro.product.model": "Pixel_7",
            "ro.product.name": "sdk_gphone64",
            "ro.product.device": "emu64a",
        }.get
        mock.device_list.return_value = [mock_device]
        yield mock
