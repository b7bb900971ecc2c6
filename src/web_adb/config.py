"""Configuration loaded from WEB_ADB_* environment variables."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields

import structlog

logger = structlog.get_logger()

ENV_PREFIX = "WEB_ADB_"

# Field name -> environment variable suffix, where they differ.
_ENV_NAMES = {
    "idle_timeout_s": "IDLE_TIMEOUT",
    "reap_interval_s": "REAP_INTERVAL",
    "watch_interval_s": "WATCH_INTERVAL",
    "use_syslog": "SYSLOG",
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class BridgeConfig:
    # ADB server (None = adbutils default, honours ANDROID_ADB_SERVER_PORT)
    adb_host: str | None = None
    adb_port: int | None = None

    # Push streams
    file_mode: int = 0o644
    idle_timeout_s: float = 300.0
    reap_interval_s: float = 30.0

    # HTTP proxy
    proxy_host: str = "127.0.0.1"
    watch_interval_s: float = 2.0

    # Logging
    log_level: str = "INFO"
    use_syslog: bool = True


def load_config(env: Mapping[str, str] | None = None) -> BridgeConfig:
    """Build a BridgeConfig from the environment, keeping defaults for bad values."""
    source = os.environ if env is None else env
    config = BridgeConfig()
    for item in fields(BridgeConfig):
        key = ENV_PREFIX + _ENV_NAMES.get(item.name, item.name.upper())
        raw = source.get(key)
        if raw is None or raw == "":
            continue
        try:
            value = _coerce(item.name, raw, getattr(config, item.name))
        except ValueError:
            logger.warning("config_value_invalid", key=key, value=raw)
            continue
        setattr(config, item.name, value)
    return config


def _coerce(name: str, raw: str, current: object) -> object:
    if name == "file_mode":
        return int(raw, 8)
    if name == "adb_port":
        return int(raw)
    if isinstance(current, bool):
        lowered = raw.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(raw)
    if isinstance(current, float):
        value = float(raw)
        if value <= 0:
            raise ValueError(raw)
        return value
    if name == "log_level":
        return raw.upper()
    return raw
