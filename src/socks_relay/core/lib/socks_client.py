"""SOCKS5 client connector.

``SocksClient`` opens a connection to the proxy, advertises exactly one
auth method, authenticates, sends a CONNECT request and returns a
``Tunnel`` once the server reports success. Any handshake failure is raised
from ``connect`` before the tunnel is handed out.

Example:
    client = SocksClient(ClientConfig(proxy_host="127.0.0.1", proxy_port=1080))
    with client.connect("example.com", 80) as tunnel:
        tunnel.sendall(b"HEAD / HTTP/1.0\\r\\n\\r\\n")
        print(tunnel.recv(4096))
"""

import socket
from typing import Any, Self

from loguru import logger

from socks_relay.core.auth import AuthMethod, client_auth
from socks_relay.core.config import ClientConfig
from socks_relay.core.exceptions import AuthenticationFailedError, DNSResolutionError, SocksError
from socks_relay.core.protocol.client_parser import (
    ClientEvent,
    ClientParser,
    ConnectReplyEvent,
    MethodSelectedEvent,
)
from socks_relay.core.protocol.constants import Command
from socks_relay.core.protocol.messages import build_greeting, build_request
from socks_relay.core.stream import BUFFER_SIZE, SocketStream

from .dns_handler import DNSResolver, Resolver, is_ip_literal


class Tunnel:
    """A connected byte stream to the destination, through the proxy.

    Bytes the proxy sent right behind its reply are returned by the first
    ``recv`` calls; ``has_pending`` tells whether any are still buffered
    before waiting on ``fileno()`` with select.
    """

    def __init__(self, stream: SocketStream, bind_addr: str, bind_port: int) -> None:
        self._stream = stream
        self.bound_address = (bind_addr, bind_port)

    @property
    def sock(self) -> socket.socket:
        return self._stream.sock

    @property
    def has_pending(self) -> bool:
        return self._stream.has_pending

    @property
    def closed(self) -> bool:
        return self._stream.closed

    def recv(self, size: int = BUFFER_SIZE) -> bytes:
        return self._stream.recv(size)

    def sendall(self, data: bytes) -> None:
        self._stream.sendall(data)

    def send(self, data: bytes) -> int:
        return self.sock.send(data)

    def shutdown(self, how: int = socket.SHUT_WR) -> None:
        self.sock.shutdown(how)

    def settimeout(self, timeout: float | None) -> None:
        self.sock.settimeout(timeout)

    def setsockopt(self, *args: Any) -> None:
        self.sock.setsockopt(*args)

    def getsockname(self) -> Any:
        return self.sock.getsockname()

    def fileno(self) -> int:
        return self.sock.fileno()

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SocksClient:
    """Client side of the SOCKS5 handshake.

    Args:
        config: Proxy address, credentials and DNS behaviour
        auth: Auth method; by default chosen from ``config.auth``
        resolver: Resolver used when ``config.dns_local`` is set
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        auth: AuthMethod | None = None,
        resolver: Resolver | None = None,
    ) -> None:
        self.config = config or ClientConfig()
        self.auth = auth or client_auth(self.config.auth)
        self.resolver = resolver or DNSResolver()

    def _destination_host(self, host: str) -> str:
        """Apply local DNS resolution if configured."""
        if is_ip_literal(host) or not self.config.dns_local:
            return host
        try:
            return self.resolver.resolve(host)
        except DNSResolutionError:
            if self.config.dns_strict:
                raise
            logger.debug(f"Local resolution of {host} failed, letting the proxy resolve it")
            return host

    def _next_event(self, parser: ClientParser, stream: SocketStream) -> ClientEvent:
        while True:
            data = stream.recv()
            if not data:
                parser.eof()
            event = parser.feed(data)
            if event is not None:
                stream.unread(parser.take_remainder())
                return event

    def connect(self, host: str, port: int) -> Tunnel:
        """Open a tunnel to ``host:port`` through the proxy.

        Args:
            host: Destination IPv4/IPv6 literal or domain name
            port: Destination TCP port

        Returns:
            Tunnel: Connected tunnel

        Raises:
            OSError: If the proxy cannot be reached
            DNSResolutionError: If strict local resolution fails
            SocksError: If the handshake fails; ``ConnectReplyError`` carries
                the server's reply code
        """
        if not 0 < port <= 0xFFFF:
            msg = f"Destination port out of range: {port}"
            raise ValueError(msg)

        destination = self._destination_host(host)
        proxy = (self.config.proxy_host, self.config.proxy_port)
        sock = socket.create_connection(proxy, timeout=self.config.timeout)
        stream = SocketStream(sock)

        try:
            parser = ClientParser(self.auth.code)
            stream.sendall(build_greeting([self.auth.code]))
            event = self._next_event(parser, stream)
            if not isinstance(event, MethodSelectedEvent):
                msg = f"Expected a method selection, got {event!r}"
                raise SocksError(msg)

            if not self.auth.client_handshake(stream):
                msg = f"Proxy {proxy[0]}:{proxy[1]} rejected the credentials"
                raise AuthenticationFailedError(msg)
            parser.authenticated()

            stream.sendall(build_request(Command.CONNECT, destination, port))
            event = self._next_event(parser, stream)
            if not isinstance(event, ConnectReplyEvent):
                msg = f"Expected a connect reply, got {event!r}"
                raise SocksError(msg)
        except BaseException:
            stream.close()
            raise

        # The handshake timeout does not apply to the tunnel
        sock.settimeout(None)

        logger.debug(
            f"Tunnel to {destination}:{port} via {proxy[0]}:{proxy[1]} established, "
            f"bound to {event.bind_addr}:{event.bind_port}"
        )
        return Tunnel(stream, event.bind_addr, event.bind_port)


def create_connection(
    address: tuple[str, int], config: ClientConfig | None = None, **kwargs: Any
) -> Tunnel:
    """Connect to ``address`` through a SOCKS5 proxy, like ``socket.create_connection``."""
    host, port = address
    return SocksClient(config, **kwargs).connect(host, port)
