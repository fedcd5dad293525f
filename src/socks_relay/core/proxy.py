"""Public entry points for embedding the SOCKS5 server and client.

This module exposes only the components an application needs:
- ``SocksServer`` / ``create_proxy_server`` to run a proxy
- ``SocksClient`` / ``create_connection`` to tunnel through one
- The configuration types both take

Example:
    from socks_relay.core.proxy import ServerConfig, create_proxy_server

    server = create_proxy_server(ServerConfig(listen_port=1080, connection_limit=64))
    server.serve_forever()

Attributes:
    __all__ (list): List of public components exposed by this module
"""

from .config import ClientConfig, Credentials, ServerConfig
from .lib import SocksClient, SocksServer, Tunnel, create_connection, create_proxy_server

__all__ = [
    "ClientConfig",
    "Credentials",
    "ServerConfig",
    "SocksClient",
    "SocksServer",
    "Tunnel",
    "create_connection",
    "create_proxy_server",
]
