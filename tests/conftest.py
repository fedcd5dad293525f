"""Shared fixtures: loopback echo server, SOCKS server factory, fake resolver."""

import socket
import socketserver
import threading

import pytest

from socks_relay.core.config import ServerConfig
from socks_relay.core.exceptions import DNSResolutionError
from socks_relay.core.lib.proxy_server import SocksServer
from socks_relay.core.stream import SocketStream


class FakeResolver:
    """Resolver answering from a fixed table."""

    def __init__(self, table: dict[str, str] | None = None) -> None:
        self.table = table or {}
        self.lookups: list[str] = []

    def resolve(self, hostname: str) -> str:
        self.lookups.append(hostname)
        try:
            return self.table[hostname]
        except KeyError:
            raise DNSResolutionError(f"unknown host {hostname}") from None


class EchoHandler(socketserver.BaseRequestHandler):
    def handle(self) -> None:
        while True:
            data = self.request.recv(4096)
            if not data:
                self.server.closed_connections.append(self.client_address)
                self.server.closed.set()
                return
            self.request.sendall(data)


class EchoServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(self) -> None:
        super().__init__(("127.0.0.1", 0), EchoHandler)
        self.closed = threading.Event()
        self.closed_connections: list[tuple[str, int]] = []


@pytest.fixture
def echo_server():
    server = EchoServer()
    thread = threading.Thread(target=server.serve_forever, kwargs={"poll_interval": 0.05}, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def echo_address(echo_server) -> tuple[str, int]:
    host, port = echo_server.server_address[:2]
    return host, port


@pytest.fixture
def fake_resolver() -> FakeResolver:
    return FakeResolver({"echo.test": "127.0.0.1", "intranet.test": "10.1.2.3"})


@pytest.fixture
def make_server(fake_resolver):
    """Factory starting SOCKS servers on a free loopback port."""
    servers: list[SocksServer] = []

    def factory(**kwargs) -> SocksServer:
        options = {"listen_host": "127.0.0.1", "listen_port": 0, "decision_timeout": 5.0}
        options.update(kwargs.pop("config", {}))
        kwargs.setdefault("resolver", fake_resolver)
        server = SocksServer(ServerConfig(**options), **kwargs)
        server.start()
        servers.append(server)
        return server

    yield factory
    for server in servers:
        server.close()
        server.kill_sessions()


@pytest.fixture
def stream_pair():
    """Two connected SocketStreams."""
    left, right = socket.socketpair()
    left.settimeout(5)
    right.settimeout(5)
    a, b = SocketStream(left), SocketStream(right)
    yield a, b
    a.close()
    b.close()


def recv_exactly(sock: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data
