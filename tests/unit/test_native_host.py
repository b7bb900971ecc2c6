"""Tests for the native messaging host loop."""

from __future__ import annotations

import io
import json
import struct
from typing import Any
from unittest.mock import patch

import pytest

from web_adb.errors import stream_not_found_error
from web_adb.models import (
    CommandResult,
    ListDevicesResponse,
    PushChunkRequest,
    PushChunkResponse,
    PushFileResponse,
    RunCommandResponse,
)
from web_adb.native.framing import read_message


class DummyCore:
    def __init__(self, *_: Any) -> None:
        self.devices: list[dict[str, str]] = [{"serial": "emulator-5554", "model": "Pixel_7"}]
        self.commands: list[tuple[str, str, list[str]]] = []
        self.pushes: list[tuple[str, str]] = []
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def list_devices(self) -> ListDevicesResponse:
        return ListDevicesResponse(devices=self.devices)

    async def run_command(self, serial: str, command: str, args: list[str]) -> RunCommandResponse:
        self.commands.append((serial, command, args))
        return RunCommandResponse(results={"emulator-5554": CommandResult(output="ok\n")})

    async def push_file(self, device_path: str, serial: str = "") -> PushFileResponse:
        self.pushes.append((device_path, serial))
        return PushFileResponse(stream_id="s1")

    async def push_chunk(self, req: PushChunkRequest) -> PushChunkResponse:
        if req.stream_id != "s1":
            raise stream_not_found_error(req.stream_id)
        return PushChunkResponse(stream_id=req.stream_id, chunk_index=req.chunk_index, success=True)


def _frames(*messages: Any) -> io.BytesIO:
    buf = io.BytesIO()
    for message in messages:
        body = message if isinstance(message, bytes) else json.dumps(message).encode()
        buf.write(struct.pack("<I", len(body)) + body)
    buf.seek(0)
    return buf


def _responses(stdout: io.BytesIO) -> list[dict[str, Any]]:
    stdout.seek(0)
    out: list[dict[str, Any]] = []
    while (body := read_message(stdout)) is not None:
        out.append(json.loads(body))
    return out


async def _run(core: DummyCore, *messages: Any) -> list[dict[str, Any]]:
    from web_adb.native.host import NativeHost

    stdout = io.BytesIO()
    await NativeHost(core, _frames(*messages), stdout).run()  # type: ignore[arg-type]
    return _responses(stdout)


@pytest.mark.asyncio
async def test_list_devices() -> None:
    responses = await _run(DummyCore(), {"command": "list-devices"})

    assert responses == [
        {
            "success": True,
            "command": "list-devices",
            "data": {"devices": [{"serial": "emulator-5554", "model": "Pixel_7"}]},
        }
    ]


@pytest.mark.asyncio
async def test_run_command_accepts_capitalized_params() -> None:
    """Should accept the extension's 'Params' spelling."""
    core = DummyCore()

    responses = await _run(
        core,
        {
            "command": "run-command",
            "device_serial": "emulator-5554",
            "Params": {"command": "ls", "args": ["-l", "/sdcard"]},
        },
    )

    assert core.commands == [("emulator-5554", "ls", ["-l", "/sdcard"])]
    assert responses[0]["data"] == {"results": {"emulator-5554": {"output": "ok\n"}}}


@pytest.mark.asyncio
async def test_push_file_and_chunk() -> None:
    core = DummyCore()

    responses = await _run(
        core,
        {"command": "push-file", "params": {"device_path": "/sdcard/a.txt"}},
        {"command": "push-chunk", "params": {"stream_id": "s1", "chunk_index": 0, "data": ""}},
    )

    assert core.pushes == [("/sdcard/a.txt", "")]
    assert responses[0]["data"] == {"stream_id": "s1", "device_errors": {}}
    assert responses[1]["success"] is True
    assert responses[1]["data"]["success"] is True


@pytest.mark.asyncio
async def test_errors_do_not_stop_the_loop() -> None:
    """Should answer every bad request and keep serving."""
    responses = await _run(
        DummyCore(),
        b"not json",
        {"command": "reboot"},
        {"command": "push-file", "params": {}},
        {"command": "push-chunk", "params": {"stream_id": "gone", "eof": True}},
        {"command": "list-devices"},
    )

    assert [r["success"] for r in responses] == [False, False, False, False, True]
    assert responses[0]["error_code"] == "ERR_INVALID_MESSAGE"
    assert responses[1] == {
        "success": False,
        "command": "reboot",
        "error": "unrecognized command: reboot",
        "error_code": "ERR_UNKNOWN_COMMAND",
    }
    assert responses[2]["error_code"] == "ERR_INVALID_PARAMS"
    assert responses[3]["error"] == "Invalid stream ID: gone"
    assert responses[3]["error_code"] == "ERR_STREAM_NOT_FOUND"


@pytest.mark.asyncio
async def test_oversized_response_is_replaced() -> None:
    core = DummyCore()
    core.devices = [{"serial": "x" * 1024} for _ in range(1100)]

    responses = await _run(core, {"command": "list-devices"})

    assert responses == [
        {
            "success": False,
            "command": "list-devices",
            "error": "message too large",
            "error_code": "ERR_MESSAGE_TOO_LARGE",
        }
    ]


@pytest.mark.asyncio
async def test_serve_stops_core_on_eof() -> None:
    from web_adb.config import BridgeConfig
    from web_adb.native import host

    created: list[DummyCore] = []

    def make_core(*args: Any) -> DummyCore:
        core = DummyCore(*args)
        created.append(core)
        return core

    with patch.object(host, "BridgeCore", make_core):
        await host.serve(BridgeConfig(), stdin=io.BytesIO(), stdout=io.BytesIO())

    assert created[0].started
    assert created[0].stopped
