"""Tests for CLI commands."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from web_adb.cli import main
from web_adb.config import BridgeConfig

runner = CliRunner()


def test_version() -> None:
    result = runner.invoke(main.app, ["version"])

    assert result.exit_code == 0
    assert "web-adb v0.1.0" in result.output


def test_install_writes_manifest(tmp_path: Path) -> None:
    binary = tmp_path / "web-adb-host"
    binary.write_text("#!/bin/sh\n")
    home = tmp_path / "home"

    with patch("web_adb.native.manifest.sys.platform", "linux"):
        result = runner.invoke(
            main.app,
            ["install", "--extension-id", "abcdefg", "--path", str(binary), "--home", str(home)],
        )

    assert result.exit_code == 0, result.output
    assert "chrome-extension://abcdefg/" in result.output
    assert "Manifest installed" in result.output
    assert list(home.rglob("*.json"))


def test_install_defaults_to_mode_script(tmp_path: Path) -> None:
    """Should look up the proxy script on PATH in proxy mode."""
    binary = tmp_path / "web-adb-proxy-host"
    binary.write_text("#!/bin/sh\n")

    with (
        patch.object(main.shutil, "which", return_value=str(binary)) as which,
        patch("web_adb.native.manifest.sys.platform", "linux"),
    ):
        result = runner.invoke(
            main.app,
            ["install", "--extension-id", "abcdefg", "--mode", "proxy", "--home", str(tmp_path)],
        )

    assert result.exit_code == 0, result.output
    which.assert_called_once_with("web-adb-proxy-host")


def test_install_without_binary() -> None:
    with patch.object(main.shutil, "which", return_value=None):
        result = runner.invoke(main.app, ["install", "--extension-id", "abcdefg"])

    assert result.exit_code == 1
    assert "not found on PATH" in result.output


def test_install_reports_bridge_errors(tmp_path: Path) -> None:
    result = runner.invoke(
        main.app,
        ["install", "--extension-id", "", "--path", str(tmp_path)],
    )

    assert result.exit_code == 1
    assert "ERR_INVALID_EXTENSION_ID" in result.output


def test_host_runs_native_loop() -> None:
    serve = AsyncMock()
    with (
        patch.object(main.native_host, "serve", serve),
        patch.object(main, "configure_from_env", return_value=BridgeConfig()),
    ):
        result = runner.invoke(main.app, ["host"])

    assert result.exit_code == 0, result.output
    serve.assert_awaited_once()


def test_proxy_runs_standalone() -> None:
    with (
        patch.object(main.runner, "serve_standalone") as serve,
        patch.object(main, "configure_from_env", return_value=BridgeConfig()),
    ):
        result = runner.invoke(main.app, ["proxy", "--port", "9000"])

    assert result.exit_code == 0, result.output
    config, host, port = serve.call_args.args
    assert host == config.proxy_host
    assert port == 9000
