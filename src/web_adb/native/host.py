"""Native messaging host - command loop over stdin/stdout."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Awaitable, Callable
from typing import Any, BinaryIO, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from web_adb.config import BridgeConfig
from web_adb.core import BridgeCore
from web_adb.errors import (
    BridgeError,
    invalid_message_error,
    invalid_params_error,
    unknown_command_error,
)
from web_adb.log_setup import configure_from_env
from web_adb.models import (
    NativeRequest,
    NativeResponse,
    PushChunkRequest,
    PushFileRequest,
    RunCommandRequest,
)
from web_adb.native.framing import encode_message, read_message, write_message

logger = structlog.get_logger()

ParamsT = TypeVar("ParamsT", bound=BaseModel)
Handler = Callable[[NativeRequest], Awaitable[BaseModel]]


class NativeHost:
    """Serve one extension connection, one request at a time."""

    def __init__(self, core: BridgeCore, stdin: BinaryIO, stdout: BinaryIO) -> None:
        self.core = core
        self._stdin = stdin
        self._stdout = stdout
        self._handlers: dict[str, Handler] = {
            "list-devices": self._list_devices,
            "run-command": self._run_command,
            "push-file": self._push_file,
            "push-chunk": self._push_chunk,
        }

    async def run(self) -> None:
        """Process requests until the extension disconnects."""
        logger.info("native_host_running")
        while True:
            raw = await asyncio.to_thread(read_message, self._stdin)
            if raw is None:
                logger.info("extension_disconnected")
                return
            resp = await self.handle_message(raw)
            await asyncio.to_thread(self.send_response, resp)

    async def handle_message(self, raw: bytes) -> NativeResponse:
        """Parse and execute one request, always producing a response."""
        try:
            req = NativeRequest.model_validate_json(raw)
        except ValidationError as exc:
            error = invalid_message_error(str(exc))
            logger.warning("native_message_invalid", error=error.message)
            return NativeResponse(error=error.message, error_code=error.code)

        logger.info("native_command_received", command=req.command)
        try:
            data = await self.handle_request(req)
        except BridgeError as exc:
            logger.info("native_command_failed", command=req.command, error=str(exc))
            return NativeResponse(command=req.command, error=exc.message, error_code=exc.code)
        return NativeResponse(success=True, command=req.command, data=data)

    async def handle_request(self, req: NativeRequest) -> dict[str, Any]:
        handler = self._handlers.get(req.command)
        if handler is None:
            raise unknown_command_error(req.command)
        result = await handler(req)
        return result.model_dump(exclude_none=True)

    def send_response(self, resp: NativeResponse) -> None:
        body = encode_message(resp.model_dump(exclude_none=True))
        try:
            write_message(self._stdout, body)
        except BridgeError as exc:
            if exc.code != "ERR_MESSAGE_TOO_LARGE":
                raise
            logger.warning("native_response_too_large", command=resp.command, size=len(body))
            fallback = NativeResponse(command=resp.command, error=exc.message, error_code=exc.code)
            write_message(self._stdout, encode_message(fallback.model_dump(exclude_none=True)))

    async def _list_devices(self, req: NativeRequest) -> BaseModel:
        return await self.core.list_devices()

    async def _run_command(self, req: NativeRequest) -> BaseModel:
        params = _parse(RunCommandRequest, req)
        return await self.core.run_command(req.device_serial, params.command, params.args)

    async def _push_file(self, req: NativeRequest) -> BaseModel:
        params = _parse(PushFileRequest, req)
        return await self.core.push_file(params.device_path, req.device_serial)

    async def _push_chunk(self, req: NativeRequest) -> BaseModel:
        params = _parse(PushChunkRequest, req)
        return await self.core.push_chunk(params)


def _parse(model: type[ParamsT], req: NativeRequest) -> ParamsT:
    try:
        return model.model_validate(req.params)
    except ValidationError as exc:
        raise invalid_params_error(req.command, str(exc)) from exc


async def serve(
    config: BridgeConfig,
    stdin: BinaryIO | None = None,
    stdout: BinaryIO | None = None,
) -> None:
    """Run the native host against stdin/stdout until EOF."""
    core = BridgeCore(config)
    await core.start()
    try:
        host = NativeHost(core, stdin or sys.stdin.buffer, stdout or sys.stdout.buffer)
        await host.run()
    finally:
        await core.stop()


def main() -> None:
    """Entry point Chrome launches; the origin argument it passes is ignored."""
    config = configure_from_env()
    asyncio.run(serve(config))
