"""Push stream manager - chunked multi-device file uploads.

A stream is opened against one device path on one or more devices. Chunks
must arrive in index order starting at 0; each accepted chunk is written to
every live device. A device whose write fails is dropped for the rest of the
stream, and the stream fails once no device is left.

    Open -> Writing (write_chunk loop) -> Closed

Closed is reached on end of stream, total device failure, idle expiry or
manager shutdown, and a closed stream id is never reused.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field

import structlog

from web_adb.errors import (
    BridgeError,
    all_devices_failed_error,
    chunk_decode_error,
    chunk_out_of_order_error,
    stream_not_found_error,
)
from web_adb.push.writer import DeviceWriter

logger = structlog.get_logger()

WriterOpener = Callable[[str, str], Awaitable[DeviceWriter]]

DEFAULT_IDLE_TIMEOUT = 300.0
DEFAULT_REAP_INTERVAL = 30.0


def decode_chunk(stream_id: str, data: str) -> bytes:
    """Decode base64 chunk data, rejecting anything that is not strict base64."""
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise chunk_decode_error(stream_id, str(exc)) from exc


def _error_text(exc: Exception) -> str:
    if isinstance(exc, BridgeError):
        return exc.message
    return str(exc) or type(exc).__name__


@dataclass
class OpenResult:
    stream_id: str
    device_errors: dict[str, str]


@dataclass
class PushStream:
    """State of one in-flight upload."""

    stream_id: str
    device_path: str
    last_chunk_index: int = -1
    writers: dict[str, DeviceWriter] = field(default_factory=dict)
    last_activity: float = field(default_factory=time.monotonic)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def serials(self) -> list[str]:
        return list(self.writers)

    def touch(self) -> None:
        self.last_activity = time.monotonic()


class PushStreamManager:
    """Owns the stream registry and serializes work per stream."""

    def __init__(
        self,
        opener: WriterOpener,
        *,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        reap_interval: float = DEFAULT_REAP_INTERVAL,
    ) -> None:
        self._opener = opener
        self._idle_timeout = idle_timeout
        self._reap_interval = reap_interval
        self._streams: dict[str, PushStream] = {}
        self._lock = asyncio.Lock()
        self._reaper_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Start the idle stream reaper."""
        logger.info("push_manager_starting", idle_timeout=self._idle_timeout)
        self._reaper_task = asyncio.create_task(self._reaper_loop())
        logger.info("push_manager_started")

    async def stop(self) -> None:
        """Stop the reaper and close every open stream."""
        logger.info("push_manager_stopping")
        if self._reaper_task:
            self._reaper_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reaper_task
            self._reaper_task = None
        async with self._lock:
            streams = list(self._streams.values())
            self._streams.clear()
        for stream in streams:
            async with stream.lock:
                await self._close_writers(stream)
        logger.info("push_manager_stopped", closed=len(streams))

    async def get(self, stream_id: str) -> PushStream | None:
        """Get a stream by id."""
        async with self._lock:
            return self._streams.get(stream_id)

    async def list_streams(self) -> list[PushStream]:
        """List open streams."""
        async with self._lock:
            return list(self._streams.values())

    @property
    def stream_count(self) -> int:
        return len(self._streams)

    async def open(self, device_path: str, serials: Iterable[str]) -> OpenResult:
        """Open a stream writing device_path on each device.

        Devices that fail to open are reported in the result; the stream is
        only registered if at least one device opened.

        Raises:
            BridgeError: ERR_ALL_DEVICES_FAILED if no device could be opened
        """
        stream = PushStream(stream_id=str(uuid.uuid4()), device_path=device_path)
        device_errors: dict[str, str] = {}
        logger.info("push_stream_opening", stream_id=stream.stream_id, path=device_path)

        try:
            for serial in serials:
                if serial in stream.writers:
                    device_errors[serial] = "device stream already opened"
                    continue
                try:
                    stream.writers[serial] = await self._opener(serial, device_path)
                except Exception as exc:
                    logger.warning(
                        "push_stream_device_open_failed",
                        stream_id=stream.stream_id,
                        serial=serial,
                        error=str(exc),
                    )
                    device_errors[serial] = _error_text(exc)
        except BaseException:
            # Cancelled mid-open: the stream was never registered.
            logger.warning("push_stream_open_aborted", stream_id=stream.stream_id)
            await self._close_writers(stream)
            raise

        if not stream.writers:
            logger.warning("push_stream_open_failed", stream_id=stream.stream_id)
            raise all_devices_failed_error(stream.stream_id, device_errors)

        async with self._lock:
            self._streams[stream.stream_id] = stream
        logger.info(
            "push_stream_opened",
            stream_id=stream.stream_id,
            devices=stream.serials,
            failed=sorted(device_errors),
        )
        return OpenResult(stream_id=stream.stream_id, device_errors=device_errors)

    async def write_chunk(self, stream_id: str, chunk_index: int, data: str) -> dict[str, str]:
        """Write one base64 chunk to every live device of the stream.

        Returns:
            Devices dropped while writing this chunk, serial -> error

        Raises:
            BridgeError: ERR_STREAM_NOT_FOUND, ERR_CHUNK_OUT_OF_ORDER or
                ERR_DECODE leave the stream untouched; ERR_ALL_DEVICES_FAILED
                means the stream has been closed
        """
        stream = await self._require(stream_id)
        async with stream.lock:
            if not await self._is_registered(stream):
                raise stream_not_found_error(stream_id)

            expected = stream.last_chunk_index + 1
            if chunk_index != expected:
                logger.info(
                    "push_chunk_out_of_order",
                    stream_id=stream_id,
                    expected=expected,
                    received=chunk_index,
                )
                raise chunk_out_of_order_error(stream_id, expected, chunk_index)

            payload = decode_chunk(stream_id, data)
            stream.touch()
            failures = await self._fan_out(stream, payload)

            if not stream.writers:
                await self._remove(stream)
                logger.warning("push_stream_all_devices_failed", stream_id=stream_id)
                raise all_devices_failed_error(stream_id, failures)

            stream.last_chunk_index += 1
            logger.debug(
                "push_chunk_written",
                stream_id=stream_id,
                chunk_index=chunk_index,
                size=len(payload),
            )
            return failures

    async def end_of_stream(self, stream_id: str) -> dict[str, str]:
        """Close all device handles and remove the stream.

        Returns:
            Devices whose close failed, serial -> error

        Raises:
            BridgeError: ERR_STREAM_NOT_FOUND if the stream is not open
        """
        stream = await self._require(stream_id)
        async with stream.lock:
            if not await self._remove(stream):
                raise stream_not_found_error(stream_id)
            logger.info("push_stream_eof", stream_id=stream_id, chunks=stream.last_chunk_index + 1)
            return await self._close_writers(stream)

    async def reap_idle(self, now: float | None = None) -> list[str]:
        """Close streams with no activity for longer than the idle timeout."""
        current = time.monotonic() if now is None else now
        async with self._lock:
            idle = [
                stream
                for stream in self._streams.values()
                if current - stream.last_activity > self._idle_timeout
            ]
        reaped: list[str] = []
        for stream in idle:
            async with stream.lock:
                if current - stream.last_activity <= self._idle_timeout:
                    continue
                if not await self._remove(stream):
                    continue
                await self._close_writers(stream)
                reaped.append(stream.stream_id)
                logger.warning("push_stream_expired", stream_id=stream.stream_id)
        return reaped

    async def _require(self, stream_id: str) -> PushStream:
        stream = await self.get(stream_id)
        if stream is None:
            logger.info("push_stream_not_found", stream_id=stream_id)
            raise stream_not_found_error(stream_id)
        return stream

    async def _is_registered(self, stream: PushStream) -> bool:
        async with self._lock:
            return self._streams.get(stream.stream_id) is stream

    async def _remove(self, stream: PushStream) -> bool:
        async with self._lock:
            if self._streams.get(stream.stream_id) is not stream:
                return False
            del self._streams[stream.stream_id]
            return True

    async def _fan_out(self, stream: PushStream, payload: bytes) -> dict[str, str]:
        serials = stream.serials
        results = await asyncio.gather(
            *(self._write_one(stream, serial, payload) for serial in serials)
        )
        failures: dict[str, str] = {}
        for serial, error in zip(serials, results, strict=True):
            if error is None:
                continue
            failures[serial] = error
            writer = stream.writers.pop(serial)
            await self._close_one(stream, serial, writer)
        return failures

    async def _write_one(self, stream: PushStream, serial: str, payload: bytes) -> str | None:
        try:
            await asyncio.to_thread(stream.writers[serial].write, payload)
        except Exception as exc:
            logger.warning(
                "push_stream_device_write_failed",
                stream_id=stream.stream_id,
                serial=serial,
                error=str(exc),
            )
            return _error_text(exc)
        return None

    async def _close_writers(self, stream: PushStream) -> dict[str, str]:
        errors: dict[str, str] = {}
        writers = list(stream.writers.items())
        stream.writers.clear()
        for serial, writer in writers:
            error = await self._close_one(stream, serial, writer)
            if error is not None:
                errors[serial] = error
        return errors

    async def _close_one(self, stream: PushStream, serial: str, writer: DeviceWriter) -> str | None:
        try:
            await asyncio.to_thread(writer.close)
        except Exception as exc:
            logger.warning(
                "push_stream_device_close_failed",
                stream_id=stream.stream_id,
                serial=serial,
                error=str(exc),
            )
            return _error_text(exc)
        return None

    async def _reaper_loop(self) -> None:
        """Periodically expire abandoned streams."""
        while True:
            await asyncio.sleep(self._reap_interval)
            try:
                await self.reap_idle()
            except Exception:
                logger.exception("push_reaper_error")
