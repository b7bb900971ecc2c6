"""Bridge core - subsystem lifecycle and transport-neutral request handling."""

from __future__ import annotations

import structlog

from web_adb.config import BridgeConfig
from web_adb.device.manager import DeviceManager
from web_adb.errors import BridgeError
from web_adb.models import (
    CommandResult,
    ListDevicesResponse,
    PushChunkRequest,
    PushChunkResponse,
    PushFileResponse,
    RunCommandResponse,
)
from web_adb.push.manager import PushStreamManager
from web_adb.push.writer import DeviceWriter

logger = structlog.get_logger()


class BridgeCore:
    """Central coordinator shared by the native host and the HTTP proxy."""

    def __init__(self, config: BridgeConfig | None = None) -> None:
        self.config = config or BridgeConfig()
        self.device_manager = DeviceManager(self.config.adb_host, self.config.adb_port)
        self.push_manager = PushStreamManager(
            self._open_writer,
            idle_timeout=self.config.idle_timeout_s,
            reap_interval=self.config.reap_interval_s,
        )
        self._running = False

    async def start(self) -> None:
        """Initialize all subsystems."""
        logger.info("bridge_core_starting")
        await self.device_manager.start()
        await self.push_manager.start()
        self._running = True
        logger.info("bridge_core_started")

    async def stop(self) -> None:
        """Close open streams and shut down."""
        logger.info("bridge_core_stopping")
        self._running = False
        await self.push_manager.stop()
        await self.device_manager.stop()
        logger.info("bridge_core_stopped")

    @property
    def is_running(self) -> bool:
        """Check if the core is running."""
        return self._running

    async def list_devices(self) -> ListDevicesResponse:
        devices = await self.device_manager.list_devices()
        return ListDevicesResponse(devices=[info.to_dict() for info in devices])

    async def run_command(
        self, serial: str, command: str, args: list[str] | None = None
    ) -> RunCommandResponse:
        """Run a command on one device, or on every device when serial is empty."""
        resp = RunCommandResponse()
        for target in await self.device_manager.resolve_targets(serial):
            try:
                output = await self.device_manager.run_command(target, command, args)
            except BridgeError as exc:
                logger.warning("command_failed", serial=target, error=str(exc))
                resp.results[target] = CommandResult(error=str(exc))
                continue
            resp.results[target] = CommandResult(output=output)
        return resp

    async def push_file(self, device_path: str, serial: str = "") -> PushFileResponse:
        """Open a push stream to device_path on one device or all devices."""
        targets = await self.device_manager.resolve_targets(serial)
        result = await self.push_manager.open(device_path, targets)
        return PushFileResponse(stream_id=result.stream_id, device_errors=result.device_errors)

    async def push_chunk(self, req: PushChunkRequest) -> PushChunkResponse:
        """Apply one chunk or EOF to a push stream.

        Chunk-level rejections are reported in the response. An unknown
        stream is raised so the transport can fail the whole request.
        """
        header = req.model_dump(include={"stream_id", "chunk_index", "eof"})

        if req.eof:
            close_errors = await self.push_manager.end_of_stream(req.stream_id)
            return PushChunkResponse(**header, success=True, device_errors=close_errors or None)

        try:
            failures = await self.push_manager.write_chunk(
                req.stream_id, req.chunk_index, req.data
            )
        except BridgeError as exc:
            if exc.code == "ERR_STREAM_NOT_FOUND":
                raise
            closed = exc.code == "ERR_ALL_DEVICES_FAILED"
            if closed:
                header["eof"] = True
            return PushChunkResponse(
                **header,
                error=exc.message,
                error_code=exc.code,
                device_errors=exc.context.get("device_errors") if closed else None,
            )
        return PushChunkResponse(**header, success=True, device_errors=failures or None)

    async def _open_writer(self, serial: str, path: str) -> DeviceWriter:
        return await self.device_manager.open_write(serial, path, self.config.file_mode)
