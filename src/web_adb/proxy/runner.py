"""Run the HTTP proxy, either standalone or as a native messaging host.

In native host mode the proxy binds an ephemeral port and reports its
address to the extension as the single native message it ever sends.
"""

from __future__ import annotations

import asyncio
import socket
import sys
from typing import BinaryIO

import structlog
import uvicorn

from web_adb.config import BridgeConfig
from web_adb.log_setup import configure_from_env
from web_adb.native.framing import encode_message, write_message

logger = structlog.get_logger()

APP_PATH = "web_adb.proxy.server:app"


def bind_socket(host: str, port: int = 0) -> socket.socket:
    """Bind a listening TCP socket; port 0 picks any free port."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


def socket_address(sock: socket.socket) -> str:
    host, port = sock.getsockname()[:2]
    return f"{host}:{port}"


def _server(config: BridgeConfig) -> uvicorn.Server:
    server_config = uvicorn.Config(
        APP_PATH,
        log_config=None,
        access_log=False,
        lifespan="on",
        log_level=config.log_level.lower(),
    )
    return uvicorn.Server(server_config)


def serve_standalone(config: BridgeConfig, host: str, port: int) -> None:
    """Serve the proxy on a fixed address."""
    sock = bind_socket(host, port)
    logger.info("adb_proxy_listening", address=socket_address(sock))
    asyncio.run(_server(config).serve(sockets=[sock]))


def serve_native(config: BridgeConfig, stdout: BinaryIO | None = None) -> None:
    """Serve the proxy on an ephemeral port and announce it over native messaging."""
    sock = bind_socket(config.proxy_host)
    address = socket_address(sock)
    logger.info("adb_proxy_listening", address=address)
    write_message(stdout or sys.stdout.buffer, encode_message(address))
    asyncio.run(_server(config).serve(sockets=[sock]))
    logger.info("adb_proxy_stopped")


def main() -> None:
    """Entry point Chrome launches for proxy mode."""
    config = configure_from_env()
    serve_native(config)
