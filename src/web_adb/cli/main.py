"""CLI entry point using Typer."""

from __future__ import annotations

import asyncio
import shutil
from enum import Enum
from pathlib import Path

import typer

from web_adb.errors import BridgeError
from web_adb.log_setup import configure_from_env
from web_adb.native import host as native_host
from web_adb.native.manifest import ChromeManifest
from web_adb.proxy import runner

app = typer.Typer(
    name="web-adb",
    help="Bridge a browser extension to the Android Debug Bridge",
    no_args_is_help=True,
)


class HostMode(str, Enum):
    HOST = "host"
    PROXY = "proxy"


# Console script Chrome launches for each mode.
HOST_SCRIPTS = {
    HostMode.HOST: "web-adb-host",
    HostMode.PROXY: "web-adb-proxy-host",
}


@app.command()
def version() -> None:
    """Show version information."""
    from web_adb import __version__

    typer.echo(f"web-adb v{__version__}")


@app.command()
def install(
    extension_id: str = typer.Option(
        ..., "--extension-id", help="Only allow connections from this extension"
    ),
    path: str | None = typer.Option(
        None, "--path", help="Path to native host binary (default: installed script)"
    ),
    mode: HostMode = typer.Option(HostMode.HOST, "--mode", help="host|proxy"),
    home: Path | None = typer.Option(None, "--home", help="Home directory to install into"),
) -> None:
    """Install the native messaging host manifest."""
    binary = path or shutil.which(HOST_SCRIPTS[mode])
    if not binary:
        typer.echo(f"Error: {HOST_SCRIPTS[mode]} not found on PATH; pass --path")
        raise typer.Exit(code=1)

    manifest = ChromeManifest(path=binary)
    try:
        manifest.set_extension_id(extension_id)
        target = manifest.install(home=home)
    except BridgeError as exc:
        typer.echo(f"{exc.code}: {exc.message}")
        if exc.remediation:
            typer.echo(f"Hint: {exc.remediation}")
        raise typer.Exit(code=1) from None

    typer.echo(manifest.render(), nl=False)
    typer.echo(f"✓ Manifest installed -> {target}")


@app.command()
def host() -> None:
    """Run the native messaging host on stdin/stdout."""
    config = configure_from_env()
    asyncio.run(native_host.serve(config))


@app.command()
def proxy(
    bind_host: str | None = typer.Option(None, "--host", help="Address to bind"),
    port: int = typer.Option(8037, "--port", help="Port to bind"),
) -> None:
    """Run the HTTP proxy standalone."""
    config = configure_from_env(use_syslog=False)
    runner.serve_standalone(config, bind_host or config.proxy_host, port)


if __name__ == "__main__":
    app()
