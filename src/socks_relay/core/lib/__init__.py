"""Core proxy library components."""

from .blacklist import DEFAULT_BLACKLIST, Blacklist
from .dns_handler import DNSResolver
from .proxy_server import SocksProxy, SocksServer, accept_all, create_proxy_server
from .proxy_stats import ProxyStats
from .session import Admission, Session, SessionManager, SessionState
from .socks_client import SocksClient, Tunnel, create_connection
from .socks_handler import SocksHandler

__all__ = [
    "DEFAULT_BLACKLIST",
    "Admission",
    "Blacklist",
    "DNSResolver",
    "ProxyStats",
    "Session",
    "SessionManager",
    "SessionState",
    "SocksClient",
    "SocksHandler",
    "SocksProxy",
    "SocksServer",
    "Tunnel",
    "accept_all",
    "create_connection",
    "create_proxy_server",
]
