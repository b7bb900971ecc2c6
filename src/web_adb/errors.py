"""Error model - Actionable errors with remediation hints."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class BridgeError(Exception):
    """
    Base error with context and remediation guidance.

    Errors cross a transport boundary (native messaging or HTTP), so each
    one carries a stable code the extension can branch on.
    """

    code: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    remediation: str = ""

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "remediation": self.remediation,
        }


# Push stream errors


def stream_not_found_error(stream_id: str) -> BridgeError:
    """Create error for an unknown or already closed push stream."""
    return BridgeError(
        code="ERR_STREAM_NOT_FOUND",
        message=f"Invalid stream ID: {stream_id}",
        context={"stream_id": stream_id},
        remediation="Open a new stream with 'push-file' and send chunks from index 0.",
    )


def chunk_out_of_order_error(stream_id: str, expected: int, received: int) -> BridgeError:
    """Create error for a chunk whose index does not follow the last accepted one."""
    return BridgeError(
        code="ERR_CHUNK_OUT_OF_ORDER",
        message=f"expected chunk {expected}, got chunk {received}",
        context={"stream_id": stream_id, "expected": expected, "received": received},
        remediation=f"Resend chunk {expected}.",
    )


def chunk_decode_error(stream_id: str, reason: str) -> BridgeError:
    """Create error for chunk data that is not valid base64."""
    return BridgeError(
        code="ERR_DECODE",
        message=f"error decoding data: {reason}",
        context={"stream_id": stream_id, "reason": reason},
        remediation="Encode chunk data with standard base64 and resend the chunk.",
    )


def device_open_failed_error(serial: str, path: str, reason: str) -> BridgeError:
    """Create error for a device whose write handle could not be opened."""
    return BridgeError(
        code="ERR_DEVICE_OPEN_FAILED",
        message=f"Cannot open {path} on {serial}: {reason}",
        context={"serial": serial, "path": path, "reason": reason},
        remediation="Check the device is online and the path is writable.",
    )


def all_devices_failed_error(stream_id: str, device_errors: dict[str, str]) -> BridgeError:
    """Create error for a stream that has no live device handles left."""
    return BridgeError(
        code="ERR_ALL_DEVICES_FAILED",
        message="all device streams closed",
        context={"stream_id": stream_id, "device_errors": device_errors},
        remediation="Check device connections and start a new push.",
    )


# Device and ADB errors


def device_offline_error(serial: str) -> BridgeError:
    """Create error for offline device."""
    return BridgeError(
        code="ERR_DEVICE_OFFLINE",
        message=f"Device offline: {serial}",
        context={"serial": serial},
        remediation="Check device connection with 'adb devices' and reconnect",
    )


def adb_connection_error(reason: str) -> BridgeError:
    """Create error for an unreachable adb server."""
    return BridgeError(
        code="ERR_ADB_CONNECTION",
        message=f"error connecting to adb: {reason}",
        context={"reason": reason},
        remediation="Start the adb server with 'adb start-server'.",
    )


def adb_command_error(command: str, reason: str) -> BridgeError:
    """Create error for adb command failure."""
    return BridgeError(
        code="ERR_ADB_COMMAND",
        message=f"adb command failed: {command}",
        context={"command": command, "reason": reason},
        remediation="Check adb connection and command arguments, then retry.",
    )


def sync_failed_error(path: str, reason: str) -> BridgeError:
    """Create error for a sync transfer the device rejected."""
    return BridgeError(
        code="ERR_SYNC_FAILED",
        message=f"sync transfer to {path} failed: {reason}",
        context={"path": path, "reason": reason},
        remediation="Check free space and permissions on the device path.",
    )


def remote_not_found_error(serial: str, path: str) -> BridgeError:
    """Create error for a missing path on the device."""
    return BridgeError(
        code="ERR_REMOTE_NOT_FOUND",
        message=f"No such file on {serial}: {path}",
        context={"serial": serial, "path": path},
        remediation="List the parent directory to verify the path.",
    )


# Transport errors


def invalid_message_error(reason: str) -> BridgeError:
    """Create error for a native message that could not be parsed."""
    return BridgeError(
        code="ERR_INVALID_MESSAGE",
        message=f"error parsing message: {reason}",
        context={"reason": reason},
        remediation="Send a JSON object with 'command', 'device_serial' and 'params'.",
    )


def invalid_params_error(command: str, reason: str) -> BridgeError:
    """Create error for command params that failed validation."""
    return BridgeError(
        code="ERR_INVALID_PARAMS",
        message=f"invalid params for {command}: {reason}",
        context={"command": command, "reason": reason},
        remediation="Check the params expected by the command.",
    )


def unknown_command_error(command: str) -> BridgeError:
    """Create error for an unrecognized native command."""
    return BridgeError(
        code="ERR_UNKNOWN_COMMAND",
        message=f"unrecognized command: {command}",
        context={"command": command},
        remediation="Use list-devices, run-command, push-file or push-chunk.",
    )


def message_too_large_error(size: int, limit: int) -> BridgeError:
    """Create error for an outgoing message over the native messaging limit."""
    return BridgeError(
        code="ERR_MESSAGE_TOO_LARGE",
        message="message too large",
        context={"size": size, "limit": limit},
        remediation="Request less data per command.",
    )


# Manifest installation errors


def invalid_extension_id_error(extension_id: str) -> BridgeError:
    """Create error for a missing extension id."""
    return BridgeError(
        code="ERR_INVALID_EXTENSION_ID",
        message="no extension ID",
        context={"extension_id": extension_id},
        remediation="Pass --extension-id with the id shown on chrome://extensions.",
    )


def invalid_manifest_name_error(name: str) -> BridgeError:
    """Create error for a host name Chrome would reject."""
    return BridgeError(
        code="ERR_INVALID_MANIFEST_NAME",
        message=f"Invalid native host name: {name}",
        context={"name": name},
        remediation="Use only lowercase alphanumerics, underscores and dots.",
    )


def binary_not_found_error(path: str) -> BridgeError:
    """Create error for a host binary that does not exist."""
    return BridgeError(
        code="ERR_BINARY_NOT_FOUND",
        message=f"binary not found at {path}",
        context={"path": path},
        remediation="Pass --path pointing at the installed web-adb-host script.",
    )


def no_allowed_origins_error() -> BridgeError:
    """Create error for a manifest without allowed origins."""
    return BridgeError(
        code="ERR_NO_ALLOWED_ORIGINS",
        message="no allowed origins",
        context={},
        remediation="Set an extension id before installing the manifest.",
    )


def unsupported_platform_error(platform: str) -> BridgeError:
    """Create error for a platform without a known manifest location."""
    return BridgeError(
        code="ERR_UNSUPPORTED_PLATFORM",
        message=f"not sure where to install manifest file on platform {platform}",
        context={"platform": platform},
        remediation="Install the manifest by hand following Chrome's native messaging docs.",
    )
