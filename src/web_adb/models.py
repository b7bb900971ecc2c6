"""Pydantic models shared by the native messaging and HTTP transports."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, Field


class NativeRequest(BaseModel):
    command: str
    # Serial of device, or empty to perform on all devices.
    device_serial: str = ""
    params: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("params", "Params"),
    )


class NativeResponse(BaseModel):
    success: bool = False
    # Not set if success is true.
    error: str | None = None
    error_code: str | None = None
    # The command this is a response to.
    command: str = ""
    data: Any = None


class RunCommandRequest(BaseModel):
    command: str
    args: list[str] = Field(default_factory=list)


class CommandResult(BaseModel):
    """Result of running a shell command on a single device."""

    output: str | None = None
    error: str | None = None


class RunCommandResponse(BaseModel):
    # Device serial -> command result.
    results: dict[str, CommandResult] = Field(default_factory=dict)


class ListDevicesResponse(BaseModel):
    devices: list[dict[str, str]]


class PushFileRequest(BaseModel):
    """Request to push a file onto one or all devices."""

    device_path: str
    device_serial: str = ""


class PushFileResponse(BaseModel):
    # Id used to send chunks.
    stream_id: str
    # Device-specific errors by device serial.
    device_errors: dict[str, str] = Field(default_factory=dict)


class ChunkHeader(BaseModel):
    # Id from the PushFileResponse.
    stream_id: str
    # 0-based index of the chunk in the stream.
    chunk_index: int = 0
    # True if there are no more chunks; data is ignored.
    eof: bool = False


class PushChunkRequest(ChunkHeader):
    # Base64-encoded data for the chunk. Empty for the EOF request.
    data: str = ""


class PushChunkResponse(ChunkHeader):
    success: bool = False
    # If eof is true, this may hold the reason the stream was closed.
    error: str | None = None
    error_code: str | None = None
    device_errors: dict[str, str] | None = None
