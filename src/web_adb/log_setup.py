"""Logging setup - structlog over stdlib logging, to syslog or stderr.

stdout is the native messaging channel, so no handler may ever write there.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from collections.abc import Mapping
from pathlib import Path

import structlog

from web_adb.config import BridgeConfig, load_config

SYSLOG_IDENT = "web-adb"
_SYSLOG_SOCKETS = ("/dev/log", "/var/run/syslog")


def _syslog_handler() -> logging.Handler | None:
    for address in _SYSLOG_SOCKETS:
        if not Path(address).exists():
            continue
        try:
            handler = logging.handlers.SysLogHandler(address=address)
        except OSError:
            continue
        handler.ident = f"{SYSLOG_IDENT}: "
        return handler
    return None


def configure_logging(level: str = "INFO", use_syslog: bool = True) -> logging.Handler:
    """Route structlog events through stdlib logging.

    Returns the installed handler: syslog when available and requested,
    otherwise stderr.
    """
    handler = _syslog_handler() if use_syslog else None
    if handler is None:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.KeyValueRenderer(key_order=["event"], sort_keys=True),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return handler


def configure_from_env(
    env: Mapping[str, str] | None = None, use_syslog: bool | None = None
) -> BridgeConfig:
    """Load config with logging already routed away from stdout.

    Warnings about bad config values are emitted on stderr, then logging is
    reconfigured from the loaded level and destination.
    """
    configure_logging(use_syslog=False)
    config = load_config(env)
    configure_logging(
        config.log_level, config.use_syslog if use_syslog is None else use_syslog
    )
    return config
