"""Native messaging host manifest - generation and per-user installation."""

from __future__ import annotations

import json
import re
import sys
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from web_adb.errors import (
    binary_not_found_error,
    invalid_extension_id_error,
    invalid_manifest_name_error,
    no_allowed_origins_error,
    unsupported_platform_error,
)

logger = structlog.get_logger()

HOST_NAME = "com.zachklipp.adb.nativeproxy"
HOST_DESCRIPTION = "web-adb native messaging proxy"

# Only lowercase alphanums, underscores, and dots are allowed.
HOST_NAME_PATTERN = re.compile(r"^[a-z0-9_]+(\.[a-z0-9_]+)*$")


class ChromeManifest(BaseModel):
    name: str = HOST_NAME
    description: str = HOST_DESCRIPTION
    # Path to host binary.
    path: str = ""
    # Must be "stdio".
    type: str = "stdio"
    allowed_origins: list[str] = Field(default_factory=list)

    def set_extension_id(self, extension_id: str) -> None:
        """Allow connections only from the given extension."""
        if not extension_id:
            raise invalid_extension_id_error(extension_id)
        self.allowed_origins = [format_extension_origin(extension_id)]

    def prepare(self) -> None:
        """Validate the manifest and resolve the host binary to an absolute path.

        Raises:
            BridgeError: If the name, binary or origins are invalid
        """
        if not HOST_NAME_PATTERN.match(self.name):
            raise invalid_manifest_name_error(self.name)
        self.type = "stdio"

        if not self.path:
            self.path = sys.argv[0]
            logger.info("manifest_binary_defaulted", path=self.path)
        binary = Path(self.path).expanduser()
        if not binary.exists():
            raise binary_not_found_error(str(binary))
        self.path = str(binary.resolve())

        if not self.allowed_origins:
            raise no_allowed_origins_error()

    def render(self) -> str:
        return json.dumps(self.model_dump(), indent=2) + "\n"

    def install(self, home: Path | None = None, platform: str | None = None) -> Path:
        """Write the manifest where Chrome looks for native hosts.

        Returns:
            Path of the written manifest file
        """
        self.prepare()
        target = manifest_path(self.name, home=home, platform=platform)
        data = self.render()
        logger.info("manifest_writing", path=str(target), manifest=data)

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(data, encoding="utf-8")
        target.chmod(0o600)
        logger.info("manifest_installed", path=str(target))
        return target


def manifest_path(name: str, home: Path | None = None, platform: str | None = None) -> Path:
    """Return the manifest location for a host name on a platform.

    A home directory selects the per-user location; without one the
    system-wide location is used.
    """
    platform = platform or sys.platform
    if home is None:
        try:
            home = Path.home()
        except RuntimeError:
            home = None

    filename = f"{name}.json"
    if platform == "darwin":
        if home is not None:
            return (
                home
                / "Library"
                / "Application Support"
                / "Google"
                / "Chrome"
                / "NativeMessagingHosts"
                / filename
            )
        return Path("/Library/Google/Chrome/NativeMessagingHosts") / filename
    if platform.startswith("linux"):
        if home is not None:
            return home / ".config" / "google-chrome" / "NativeMessagingHosts" / filename
        return Path("/etc/opt/chrome/native-messaging-hosts") / filename
    raise unsupported_platform_error(platform)


def format_extension_origin(extension_id: str) -> str:
    return f"chrome-extension://{extension_id}/"
