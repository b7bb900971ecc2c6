"""Device manager - ADB device discovery, shell commands and file access."""

from __future__ import annotations

import asyncio
import shlex
import stat
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

import structlog
from adbutils import AdbError

from web_adb.errors import (
    BridgeError,
    adb_command_error,
    adb_connection_error,
    device_offline_error,
    device_open_failed_error,
    remote_not_found_error,
)
from web_adb.push.writer import DEFAULT_FILE_MODE, SyncFileWriter

if TYPE_CHECKING:
    from adbutils import AdbClient, AdbDevice

logger = structlog.get_logger()


@dataclass
class DeviceInfo:
    """Device information."""

    serial: str
    model: str
    product: str
    device: str

    def to_dict(self) -> dict[str, str]:
        return {
            "serial": self.serial,
            "model": self.model,
            "product": self.product,
            "device": self.device,
        }


@dataclass
class RemoteEntry:
    """A file or directory on a device."""

    name: str
    mode: int
    size: int
    mtime: datetime | None

    @property
    def exists(self) -> bool:
        return self.mode != 0

    @property
    def is_regular(self) -> bool:
        return stat.S_ISREG(self.mode)

    @property
    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.mode)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "mode": stat.filemode(self.mode),
            "size": self.size,
            "modified_at": self.mtime.isoformat() if self.mtime else None,
            "is_dir": self.is_dir,
        }


@dataclass
class DeviceEvent:
    """A device appearing on or leaving the adb server."""

    type: str  # connected | disconnected
    serial: str

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "data": self.serial}


class DeviceManager:
    """Manages ADB device connections and per-device operations."""

    def __init__(self, adb_host: str | None = None, adb_port: int | None = None) -> None:
        self._adb_host = adb_host
        self._adb_port = adb_port
        self._devices: dict[str, DeviceInfo] = {}
        self._adb_devices: dict[str, AdbDevice] = {}
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        """Start device manager and run a first discovery."""
        logger.info("device_manager_starting")
        try:
            await self._discover_devices()
        except BridgeError as exc:
            # The adb server may come up later; requests retry discovery.
            logger.warning("device_discovery_failed", error=str(exc))
        logger.info("device_manager_started", device_count=len(self._devices))

    async def stop(self) -> None:
        """Stop device manager and drop cached connections."""
        logger.info("device_manager_stopping")
        self._adb_devices.clear()
        self._devices.clear()
        logger.info("device_manager_stopped")

    async def list_devices(self) -> list[DeviceInfo]:
        """List all connected devices."""
        await self._discover_devices()
        return list(self._devices.values())

    async def list_serials(self) -> list[str]:
        """List serials of all connected devices."""
        await self._discover_devices()
        return list(self._devices)

    async def resolve_targets(self, serial: str | None) -> list[str]:
        """Expand an optional serial into target serials; empty means every device."""
        if serial:
            return [serial]
        return await self.list_serials()

    async def get_adb_device(self, serial: str) -> AdbDevice | None:
        """Get a cached adbutils device, or None if it is not connected."""
        await self._discover_devices()
        return self._adb_devices.get(serial)

    async def require_device(self, serial: str) -> AdbDevice:
        device = await self.get_adb_device(serial)
        if device is None:
            raise device_offline_error(serial)
        return device

    async def run_command(self, serial: str, command: str, args: list[str] | None = None) -> str:
        """Run a shell command on a device and return its output."""
        device = await self.require_device(serial)
        cmdline = shlex.join([command, *(args or [])])
        logger.info("running_command", serial=serial, command=cmdline)

        def _run() -> str:
            return str(device.shell(cmdline))

        try:
            return await asyncio.to_thread(_run)
        except (AdbError, OSError) as exc:
            raise adb_command_error(cmdline, str(exc)) from exc

    async def open_write(
        self, serial: str, path: str, mode: int = DEFAULT_FILE_MODE
    ) -> SyncFileWriter:
        """Open a sync write handle for path on a device."""
        device = await self.require_device(serial)
        try:
            writer = await asyncio.to_thread(SyncFileWriter, device, path, mode)
        except (AdbError, OSError) as exc:
            raise device_open_failed_error(serial, path, str(exc)) from exc
        logger.info("device_write_opened", serial=serial, path=path, mode=oct(mode))
        return writer

    async def stat(self, serial: str, path: str) -> RemoteEntry:
        """Stat a path on a device; a missing path has mode 0."""
        device = await self.require_device(serial)
        info = await asyncio.to_thread(device.sync.stat, path)
        return _entry(path, info)

    async def list_dir(self, serial: str, path: str) -> list[RemoteEntry]:
        """List directory entries on a device."""
        device = await self.require_device(serial)
        logger.info("listing_files", serial=serial, path=path)

        def _list() -> list[Any]:
            return list(device.sync.list(path))

        infos = await asyncio.to_thread(_list)
        return [_entry(info.path, info) for info in infos if info.path not in (".", "..")]

    async def iter_file(self, serial: str, path: str) -> Iterator[bytes]:
        """Return a blocking iterator over a device file's contents."""
        device = await self.require_device(serial)
        entry = await self.stat(serial, path)
        if not entry.exists:
            raise remote_not_found_error(serial, path)
        logger.info("downloading_file", serial=serial, path=path, size=entry.size)
        return iter(device.sync.iter_content(path))

    async def watch_devices(self, interval: float = 2.0) -> AsyncIterator[DeviceEvent]:
        """Yield connect/disconnect events by polling the adb device list."""
        logger.info("device_watch_starting")
        known = set(await self.list_serials())
        while True:
            await asyncio.sleep(interval)
            current = set(await self.list_serials())
            for serial in sorted(current - known):
                logger.info("device_connected", serial=serial)
                yield DeviceEvent(type="connected", serial=serial)
            for serial in sorted(known - current):
                logger.info("device_disconnected", serial=serial)
                yield DeviceEvent(type="disconnected", serial=serial)
            known = current

    def _client(self) -> AdbClient:
        if self._adb_host is None and self._adb_port is None:
            from adbutils import adb

            return adb

        from adbutils import AdbClient

        return AdbClient(host=self._adb_host or "127.0.0.1", port=self._adb_port or 5037)

    async def _discover_devices(self) -> None:
        """Discover connected ADB devices."""
        async with self._lock:
            client = self._client()

            def _list() -> list[AdbDevice]:
                return list(client.device_list())

            try:
                devices = await asyncio.to_thread(_list)
            except (AdbError, OSError) as exc:
                raise adb_connection_error(str(exc)) from exc

            seen: set[str] = set()
            for dev in devices:
                serial = dev.serial
                if not serial:
                    logger.warning("device_missing_serial")
                    continue
                seen.add(serial)
                self._adb_devices[serial] = dev
                if serial not in self._devices:
                    info = await self._build_device_info(dev)
                    self._devices[serial] = info
                    logger.info("device_discovered", serial=serial, model=info.model)

            disconnected = set(self._devices.keys()) - seen
            for serial in disconnected:
                self._devices.pop(serial, None)
                self._adb_devices.pop(serial, None)
                logger.info("device_removed", serial=serial)

    async def _build_device_info(self, device: AdbDevice) -> DeviceInfo:
        """Build DeviceInfo from adb device properties."""

        def _props() -> dict[str, str]:
            props = device.prop
            return {
                "model": props.get("ro.product.model") or "unknown",
                "product": props.get("ro.product.name") or "",
                "device": props.get("ro.product.device") or "",
            }

        try:
            props = await asyncio.to_thread(_props)
        except Exception:
            logger.exception("device_props_failed", serial=device.serial)
            props = {"model": "unknown", "product": "", "device": ""}

        return DeviceInfo(
            serial=device.serial or "",
            model=props["model"],
            product=props["product"],
            device=props["device"],
        )


def _entry(path: str, info: Any) -> RemoteEntry:
    name = path.rstrip("/").rsplit("/", 1)[-1] or "/"
    mtime = getattr(info, "mtime", None)
    return RemoteEntry(
        name=name,
        mode=int(getattr(info, "mode", 0) or 0),
        size=int(getattr(info, "size", 0) or 0),
        mtime=mtime if isinstance(mtime, datetime) else None,
    )
