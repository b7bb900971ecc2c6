"""Tests for the proxy runner."""

from __future__ import annotations

import io
import json
from unittest.mock import AsyncMock, patch

from web_adb.config import BridgeConfig
from web_adb.native.framing import read_message
from web_adb.proxy import runner


def test_bind_socket_picks_free_port() -> None:
    sock = runner.bind_socket("127.0.0.1")
    try:
        host, port = sock.getsockname()
        assert host == "127.0.0.1"
        assert port > 0
        assert runner.socket_address(sock) == f"127.0.0.1:{port}"
    finally:
        sock.close()


def test_serve_native_announces_address() -> None:
    """Should send the bound address as the first native message."""
    stdout = io.BytesIO()
    server = AsyncMock()

    with patch.object(runner.uvicorn, "Server") as server_cls:
        server_cls.return_value.serve = server
        runner.serve_native(BridgeConfig(), stdout=stdout)

    stdout.seek(0)
    body = read_message(stdout)
    assert body is not None
    address = json.loads(body)
    assert address.startswith("127.0.0.1:")

    sockets = server.call_args.kwargs["sockets"]
    assert runner.socket_address(sockets[0]) == address
    sockets[0].close()
