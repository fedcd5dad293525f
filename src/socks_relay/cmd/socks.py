"""SOCKS proxy server command interface.

This module provides a high-level interface for:
- Starting the SOCKS5 server
- Showing the live statistics panel
- Copying the proxy address to the clipboard
- Handling server lifecycle and shutdown

Example:
    # Start a SOCKS proxy with default settings
    run_socks_proxy(ServerConfig())
"""

import sys

import pyperclip
from loguru import logger
from prompt_toolkit.shortcuts import ProgressBar
from rich.console import Console
from rich.markup import escape

from socks_relay.core.config import ServerConfig
from socks_relay.core.proxy import SocksServer, create_proxy_server
from socks_relay.core.utils.prompt import create_proxy_ui
from socks_relay.core.utils.utils import format_address

console = Console()


def _start_server(config: ServerConfig) -> SocksServer:
    if not sys.stdout.isatty():
        return create_proxy_server(config)

    with ProgressBar(title=f"Starting SOCKS proxy on port {config.listen_port}...") as pb:
        for _ in pb(range(1)):
            server = create_proxy_server(config)
    return server


def copy_to_clipboard(address: str) -> bool:
    """Copy the proxy address to the clipboard, reporting failures instead of raising."""
    try:
        pyperclip.copy(address)
    except pyperclip.PyperclipException as e:
        console.print(f"[yellow]Could not copy to clipboard: {e}")
        return False
    console.print("[bold green]Proxy address copied to clipboard")
    return True


def run_socks_proxy(config: ServerConfig, *, show_ui: bool = False, copy_address: bool = False) -> None:
    """Run the SOCKS5 server until interrupted.

    Args:
        config: Server options
        show_ui: Show the live statistics panel
        copy_address: Copy the listening address to the clipboard
    """
    server = _start_server(config)
    host, port = server.address
    address = format_address(host, port)
    console.print(f"[green]SOCKS5 proxy server started on {escape(address)}")

    if copy_address:
        copy_to_clipboard(address)

    ui = None
    if show_ui:
        ui, ui_thread = create_proxy_ui(server.stats, host, port)
        ui_thread.start()

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
        console.print("\n[yellow]Shutting down proxy server...")
    finally:
        if ui is not None:
            ui.stop()
        server.close()
        server.kill_sessions()
