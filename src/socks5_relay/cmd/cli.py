"""Command-line interface for the SOCKS5 relay.

This module provides the main command-line interface, handling:
- Command-line and environment variable options
- Logging setup
- Server startup and bind failures

Example:
    # Run from command line:
    $ socks5-relay proxy --port 1080
    $ SOCKS5_RELAY_PORT=1081 python -m socks5_relay proxy --debug
"""

import typer
from loguru import logger
from rich.console import Console

from socks5_relay import __version__
from socks5_relay.core.config import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_HOST,
    DEFAULT_MAX_INFLIGHT_DATAGRAMS,
    DEFAULT_PORT,
    DEFAULT_UDP_REPLY_TIMEOUT,
    ProxyConfig,
)
from socks5_relay.core.exceptions import ConfigError
from socks5_relay.core.proxy import create_proxy_server
from socks5_relay.core.utils.log_config import setup_logging

console = Console()
app = typer.Typer(help="SOCKS5 relay with CONNECT and UDP ASSOCIATE support")


@app.command(name="version")
def show_version() -> None:
    """Show version information."""
    console.print(f"[cyan]SOCKS5 Relay v{__version__}[/cyan]")


@app.command(name="proxy")
def start_proxy(
    host: str = typer.Option(DEFAULT_HOST, "--host", "-H", envvar="SOCKS5_RELAY_HOST", help="Address to bind"),
    port: int = typer.Option(
        DEFAULT_PORT, "--port", "-p", envvar="SOCKS5_RELAY_PORT", help="TCP and UDP port to listen on"
    ),
    udp_timeout: float = typer.Option(
        DEFAULT_UDP_REPLY_TIMEOUT,
        "--udp-timeout",
        envvar="SOCKS5_RELAY_UDP_TIMEOUT",
        help="Seconds to wait for a UDP destination's reply",
    ),
    max_datagrams: int = typer.Option(
        DEFAULT_MAX_INFLIGHT_DATAGRAMS,
        "--max-datagrams",
        envvar="SOCKS5_RELAY_MAX_DATAGRAMS",
        help="Concurrent UDP forwards before packets are dropped (0 = unbounded)",
    ),
    connect_timeout: float | None = typer.Option(
        None, "--connect-timeout", envvar="SOCKS5_RELAY_CONNECT_TIMEOUT", help="CONNECT dial timeout in seconds"
    ),
    idle_timeout: float | None = typer.Option(
        None, "--idle-timeout", envvar="SOCKS5_RELAY_IDLE_TIMEOUT", help="Close idle CONNECT sessions after N seconds"
    ),
    buffer_size: int = typer.Option(
        DEFAULT_BUFFER_SIZE, "--buffer-size", envvar="SOCKS5_RELAY_BUFFER_SIZE", help="Stream relay read size"
    ),
    open_udp: bool = typer.Option(
        False,
        "--open-udp",
        envvar="SOCKS5_RELAY_OPEN_UDP",
        help="Relay datagrams from any host, not only hosts with an open UDP ASSOCIATE",
    ),
    ui: bool = typer.Option(False, "--ui", help="Show live statistics panel"),
    debug: bool = typer.Option(False, "--debug", envvar="SOCKS5_RELAY_DEBUG", help="Enable debug logging"),
) -> None:
    """Start the SOCKS5 relay."""
    setup_logging(debug=debug)

    try:
        config = ProxyConfig(
            host=host,
            port=port,
            udp_reply_timeout=udp_timeout,
            max_inflight_datagrams=max_datagrams or None,
            connect_timeout=connect_timeout,
            idle_timeout=idle_timeout,
            buffer_size=buffer_size,
            enforce_association=not open_udp,
            show_ui=ui,
        ).validate()
    except ConfigError as e:
        console.print(f"[red]Invalid configuration: {e}")
        raise typer.Exit(2) from e

    logger.info(f"Starting SOCKS5 relay on {config.host}:{config.port}")
    try:
        create_proxy_server(config)
    except OSError as e:
        logger.error(f"Could not bind {config.host}:{config.port}: {e}")
        console.print(f"[red]Error: {e}")
        raise typer.Exit(1) from e


if __name__ == "__main__":
    app()
