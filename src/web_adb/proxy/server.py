"""FastAPI HTTP proxy exposing adb devices, files and push streams."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from email.utils import format_datetime
from typing import Any
from urllib.parse import quote

import structlog
from adbutils import AdbError
from fastapi import FastAPI, Request
from fastapi.responses import (
    JSONResponse,
    PlainTextResponse,
    RedirectResponse,
    Response,
    StreamingResponse,
)
from pydantic import ValidationError

from web_adb import __version__
from web_adb.config import load_config
from web_adb.core import BridgeCore
from web_adb.errors import (
    BridgeError,
    invalid_params_error,
    remote_not_found_error,
    sync_failed_error,
)
from web_adb.models import PushChunkRequest, PushFileRequest, RunCommandRequest
from web_adb.proxy.sse import SSE_MEDIA_TYPE, ServerSentEvent, encode_events, json_event
from web_adb.push.writer import DeviceWriter

logger = structlog.get_logger()

EndpointResponse = Response | dict[str, Any] | list[dict[str, Any]]

_STATUS_BY_CODE = {
    "ERR_DEVICE_OFFLINE": 404,
    "ERR_STREAM_NOT_FOUND": 404,
    "ERR_REMOTE_NOT_FOUND": 404,
    "ERR_ADB_CONNECTION": 502,
    "ERR_ALL_DEVICES_FAILED": 502,
    "ERR_ADB_COMMAND": 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage bridge lifecycle."""
    logger.info("proxy_starting")
    app.state.core = BridgeCore(load_config())
    await app.state.core.start()
    yield
    logger.info("proxy_stopping")
    await app.state.core.stop()


app = FastAPI(
    title="web-adb proxy",
    version=__version__,
    lifespan=lifespan,
)


def _error_response(error: BridgeError, status_code: int | None = None) -> JSONResponse:
    if status_code is None:
        status_code = _STATUS_BY_CODE.get(error.code, 400)
    logger.info("request_error", code=error.code, error=error.message, status=status_code)
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "error": error.to_dict()},
    )


@app.middleware("http")
async def proxy_headers(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    client = request.client.host if request.client else "-"
    logger.info("http_request", client=client, method=request.method, url=str(request.url))
    response = await call_next(request)
    response.headers["Cache-Control"] = "no-cache"
    response.headers["Access-Control-Allow-Origin"] = "*"
    return response


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check endpoint."""
    core: BridgeCore = app.state.core
    return {
        "status": "ok",
        "running": core.is_running,
        "open_streams": core.push_manager.stream_count,
    }


@app.api_route("/devices", methods=["GET", "HEAD"], response_model=None)
async def list_devices(request: Request) -> EndpointResponse:
    """List connected devices, or stream connect/disconnect events over SSE."""
    core: BridgeCore = app.state.core
    if SSE_MEDIA_TYPE in request.headers.get("accept", ""):
        return StreamingResponse(encode_events(_device_events(core)), media_type=SSE_MEDIA_TYPE)

    try:
        resp = await core.list_devices()
    except BridgeError as exc:
        return _error_response(exc, status_code=502)
    return resp.devices


async def _device_events(core: BridgeCore) -> AsyncIterator[ServerSentEvent]:
    logger.info("device_watch_subscribed")
    try:
        async for event in core.device_manager.watch_devices(core.config.watch_interval_s):
            yield json_event(event.to_dict())
    except BridgeError as exc:
        logger.warning("device_watch_failed", error=str(exc))
        yield json_event({"type": "error", "data": exc.message})


@app.get("/devices/{serial}", response_model=None)
async def device_info(serial: str) -> Response:
    """Redirect to the device's root directory listing."""
    return RedirectResponse(url=f"/devices/{quote(serial, safe='')}/files/", status_code=303)


@app.api_route("/devices/{serial}/files/{path:path}", methods=["GET", "HEAD"], response_model=None)
async def get_file(serial: str, path: str, request: Request) -> EndpointResponse:
    """Download a regular file, or list a directory as JSON."""
    core: BridgeCore = app.state.core
    remote = "/" + path

    try:
        entry = await core.device_manager.stat(serial, remote)
        if not entry.exists:
            raise remote_not_found_error(serial, remote)

        if not entry.is_regular:
            entries = await core.device_manager.list_dir(serial, remote)
            return [item.to_dict() for item in entries]

        # Size 0 may be a device node, so leave the length open.
        headers: dict[str, str] = {}
        if entry.size > 0:
            headers["Content-Length"] = str(entry.size)
        modified = entry.mtime.astimezone(UTC) if entry.mtime else datetime.now(UTC)
        headers["Last-Modified"] = format_datetime(modified, usegmt=True)

        if request.method == "HEAD":
            return Response(headers=headers, media_type="application/octet-stream")
        chunks = await core.device_manager.iter_file(serial, remote)
    except BridgeError as exc:
        return _error_response(exc)
    except (AdbError, OSError) as exc:
        return _error_response(sync_failed_error(remote, str(exc)), status_code=502)

    return StreamingResponse(chunks, media_type="application/octet-stream", headers=headers)


@app.post("/devices/{serial}/files/{path:path}", response_model=None)
async def upload_file(serial: str, path: str, request: Request) -> EndpointResponse:
    """Write the raw request body to a file on the device."""
    core: BridgeCore = app.state.core
    remote = "/" + path
    logger.info("uploading_file", serial=serial, path=remote)

    try:
        writer = await core.device_manager.open_write(serial, remote, core.config.file_mode)
    except BridgeError as exc:
        return _error_response(exc)

    length = 0
    try:
        async for chunk in request.stream():
            if not chunk:
                continue
            await asyncio.to_thread(writer.write, chunk)
            length += len(chunk)
        await asyncio.to_thread(writer.close)
    except (BridgeError, AdbError, OSError) as exc:
        await _close_after_failure(writer, remote)
        reason = f"error uploading file after {length} bytes: {exc}"
        return _error_response(sync_failed_error(remote, reason), status_code=503)
    except BaseException:
        # Client disconnects and cancellation still release the sync connection.
        logger.warning("upload_aborted", serial=serial, path=remote, length=length)
        await _close_after_failure(writer, remote)
        raise

    logger.info("file_uploaded", serial=serial, path=remote, length=length)
    return {"length": length}


async def _close_after_failure(writer: DeviceWriter, remote: str) -> None:
    try:
        await asyncio.to_thread(writer.close)
    except (BridgeError, AdbError, OSError) as exc:
        logger.warning("upload_close_failed", path=remote, error=str(exc))


@app.post("/devices/{serial}/execute", response_model=None)
async def execute(serial: str, request: Request) -> Response:
    """Run a shell command and return its output as text."""
    core: BridgeCore = app.state.core
    # The extension posts JSON without a JSON content type.
    body = await request.body()
    try:
        req = RunCommandRequest.model_validate_json(body)
    except ValidationError as exc:
        return _error_response(invalid_params_error("execute", str(exc)))
    if not req.command:
        return _error_response(invalid_params_error("execute", "no command specified"))

    try:
        output = await core.device_manager.run_command(serial, req.command, req.args)
    except BridgeError as exc:
        return _error_response(exc)
    return PlainTextResponse(output)


@app.post("/push-file", response_model=None)
async def push_file(req: PushFileRequest) -> EndpointResponse:
    """Open a push stream to one device, or every device if no serial is given."""
    core: BridgeCore = app.state.core
    try:
        resp = await core.push_file(req.device_path, req.device_serial)
    except BridgeError as exc:
        return _error_response(exc)
    return resp.model_dump()


@app.post("/push-chunk", response_model=None)
async def push_chunk(req: PushChunkRequest) -> EndpointResponse:
    """Send one chunk, or EOF, to an open push stream."""
    core: BridgeCore = app.state.core
    try:
        resp = await core.push_chunk(req)
    except BridgeError as exc:
        return _error_response(exc)
    return resp.model_dump(exclude_none=True)
