"""Command-line interface for the SOCKS5 proxy.

This module provides the main command-line interface, handling:
- Command-line argument parsing
- Configuration file loading and merging with flags
- Server startup and shutdown
- Client handshake probing
- Error reporting

Command-line flags override values from the configuration file, which
override the built-in defaults.

Example:
    # Run from command line:
    $ socks-relay serve --port 1080 --limit 128 --username alice --password wonderland
    $ socks-relay probe example.com 80 --proxy-port 1080
"""

from pathlib import Path
from typing import Any

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from socks_relay import __version__
from socks_relay.core.config import ClientConfig, Credentials, ServerConfig, load_config
from socks_relay.core.exceptions import ConfigError, ProxyError
from socks_relay.core.lib.socks_client import SocksClient
from socks_relay.core.network import list_interfaces
from socks_relay.core.utils.log_config import LOG_DIR, configure_logging
from socks_relay.core.utils.utils import format_address

from .socks import run_socks_proxy

console = Console()
app = typer.Typer(help="SOCKS5 proxy server and client")


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[cyan]SOCKS Relay v{__version__}[/cyan]")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
) -> None:
    """SOCKS5 proxy server and client."""


def _config_section(path: Path | None, section: str) -> dict[str, Any]:
    if path is None:
        return {}
    return load_config(path).get(section, {})


def _credentials(username: str | None, password: str | None) -> Credentials | None:
    if username is None and password is None:
        return None
    if not username or not password:
        msg = "--username and --password must be given together"
        raise typer.BadParameter(msg)
    return Credentials(username, password)


def _fail(message: str) -> typer.Exit:
    console.print(f"[red]{escape(message)}")
    return typer.Exit(code=1)


@app.command(name="serve")
def serve(
    host: str | None = typer.Option(None, "--host", "-H", help="Address to listen on"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to listen on"),
    limit: int | None = typer.Option(None, "--limit", help="Maximum simultaneous connections"),
    blacklist: list[str] | None = typer.Option(
        None, "--blacklist", "-b", help="CIDR range to refuse (repeatable)"
    ),
    no_default_blacklist: bool = typer.Option(
        False, "--no-default-blacklist", help="Do not block private and link-local ranges"
    ),
    username: str | None = typer.Option(None, "--username", "-u", help="Require this username"),
    password: str | None = typer.Option(None, "--password", help="Require this password"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="TOML config file"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    ui: bool = typer.Option(True, "--ui/--no-ui", help="Show live statistics"),
    copy: bool = typer.Option(False, "--copy", help="Copy the proxy address to the clipboard"),
) -> None:
    """Start the SOCKS5 server."""
    configure_logging(debug=debug)

    try:
        base = ServerConfig.from_mapping(_config_section(config_file, "server"))
        config = base.merge(
            listen_host=host,
            listen_port=port,
            connection_limit=limit,
            blacklist=(*base.blacklist, *blacklist) if blacklist else None,
            blacklist_defaults=False if no_default_blacklist else None,
            auth=_credentials(username, password),
        )
    except ConfigError as e:
        raise _fail(f"Configuration error: {e}") from e

    logger.info(f"Starting SOCKS5 server on {config.listen_host}:{config.listen_port}")
    logger.debug(f"Logs are written to {LOG_DIR}")
    try:
        run_socks_proxy(config, show_ui=ui, copy_address=copy)
    except ProxyError as e:
        raise _fail(f"Error: {e}") from e
    except OSError as e:
        logger.exception("Error starting proxy server")
        raise _fail(f"Could not start server: {e}") from e


@app.command(name="probe")
def probe(
    host: str = typer.Argument(..., help="Destination host"),
    port: int = typer.Argument(..., help="Destination port"),
    proxy_host: str | None = typer.Option(None, "--proxy-host", help="SOCKS5 server address"),
    proxy_port: int | None = typer.Option(None, "--proxy-port", help="SOCKS5 server port"),
    username: str | None = typer.Option(None, "--username", "-u", help="Username to send"),
    password: str | None = typer.Option(None, "--password", help="Password to send"),
    dns_local: bool | None = typer.Option(
        None, "--dns-local/--dns-remote", help="Resolve the destination locally"
    ),
    dns_strict: bool | None = typer.Option(
        None, "--dns-strict/--no-dns-strict", help="Fail if local resolution fails"
    ),
    timeout: float | None = typer.Option(5.0, "--timeout", help="Handshake timeout in seconds"),
    config_file: Path | None = typer.Option(None, "--config", "-c", help="TOML config file"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
) -> None:
    """Open a tunnel through a SOCKS5 server and report the bound address."""
    configure_logging(debug=debug, log_file=False)

    try:
        config = ClientConfig.from_mapping(_config_section(config_file, "client")).merge(
            proxy_host=proxy_host,
            proxy_port=proxy_port,
            auth=_credentials(username, password),
            dns_local=dns_local,
            dns_strict=dns_strict,
            timeout=timeout,
        )
    except ConfigError as e:
        raise _fail(f"Configuration error: {e}") from e

    try:
        with SocksClient(config).connect(host, port) as tunnel:
            bind_addr, bind_port = tunnel.bound_address
    except (ProxyError, OSError, ValueError) as e:
        raise _fail(f"Probe failed: {e}") from e

    table = Table(title="SOCKS5 tunnel")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Proxy", escape(format_address(config.proxy_host, config.proxy_port)))
    table.add_row("Destination", escape(format_address(host, port)))
    table.add_row("Bound address", escape(format_address(bind_addr, bind_port)))
    console.print(table)


@app.command(name="interfaces")
def interfaces(
    all_: bool = typer.Option(False, "--all", "-a", help="Include interfaces that are down"),
) -> None:
    """List local addresses the server can listen on."""
    table = Table(title="Network interfaces")
    table.add_column("Interface", style="cyan")
    table.add_column("Addresses", style="green")
    table.add_column("Status")

    for iface in list_interfaces(include_down=all_):
        status = "up" if iface.is_up else "down"
        if iface.is_loopback:
            status += " (loopback)"
        table.add_row(iface.name, ", ".join(iface.addresses), status)
    console.print(table)


if __name__ == "__main__":
    app()
