"""SOCKS5 proxy server implementation with thread-per-connection support.

This module implements the server side of the proxy:
- ``SocksProxy``: threaded TCP server enforcing the connection ceiling
- ``SocksServer``: orchestrator owning the auth method, the blacklist, the
  embedding policy and the session relay manager

Every inbound connection runs in its own daemon thread. The connection
ceiling is checked and counted in ``verify_request`` under a lock, so
admission and termination never race; connections over the ceiling are
closed before a single handshake byte is read.

Example:
    def policy(request, session_id, accept, deny):
        accept() if request.dst_port in (80, 443) else deny()

    with SocksServer(ServerConfig(listen_port=1080), policy=policy) as server:
        server.serve_forever()
"""

import socket
import socketserver
import threading
from collections.abc import Callable
from typing import Any, Self

from loguru import logger

from socks_relay.core.auth import AuthMethod, Verifier, server_auth
from socks_relay.core.config import ServerConfig
from socks_relay.core.protocol.server_parser import Request
from socks_relay.core.stream import SocketStream

from .blacklist import Blacklist
from .dns_handler import DNSResolver, Resolver
from .proxy_stats import ProxyStats
from .session import CloseCallback, ConnectFactory, ErrorCallback, SessionManager, default_connect
from .socks_handler import SocksHandler

Policy = Callable[[Request, str, Callable[[], None], Callable[[], None]], None]

SHUTDOWN_POLL_INTERVAL = 0.5  # seconds


def accept_all(
    request: Request, session_id: str, accept: Callable[[], None], deny: Callable[[], None]
) -> None:
    """Default policy: accept every request."""
    accept()


class SocksProxy(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """Threaded TCP server with a connection ceiling."""

    allow_reuse_address = True
    daemon_threads = True
    request_queue_size = 100

    def __init__(
        self, server_address: tuple[str, int], handler_class: type, socks: "SocksServer"
    ) -> None:
        self.socks = socks
        self.connection_count = 0
        self._count_lock = threading.Lock()
        if ":" in server_address[0]:
            self.address_family = socket.AF_INET6
        super().__init__(server_address, handler_class)

    def verify_request(self, request: Any, client_address: Any) -> bool:
        """Admit the connection if the ceiling allows it, counting it atomically."""
        limit = self.socks.config.connection_limit
        with self._count_lock:
            if limit is not None and self.connection_count >= limit:
                admitted = False
            else:
                self.connection_count += 1
                admitted = True

        if not admitted:
            logger.warning(f"Connection limit ({limit}) reached, dropping {client_address[0]}")
            self.socks.stats.connection_rejected()
            return False

        self.socks.stats.connection_started()
        return True

    def process_request_thread(self, request: Any, client_address: Any) -> None:
        try:
            super().process_request_thread(request, client_address)
        finally:
            with self._count_lock:
                self.connection_count -= 1
            self.socks.stats.connection_ended()

    def handle_error(self, request: Any, client_address: Any) -> None:
        logger.exception(f"Unhandled error serving {client_address}")


class SocksServer:
    """SOCKS5 server.

    Args:
        config: Server options
        auth: Auth method; by default chosen from ``config.auth`` and ``verifier``
        verifier: Credential verifier ``(username, password) -> bool``
        policy: Called as ``policy(request, session_id, accept, deny)`` for every
            CONNECT request; exactly one of accept/deny takes effect
        resolver: DNS resolver for domain-name destinations
        connect: Factory opening outbound sockets
        on_session_close: Called with the session id when a session closes
        on_session_error: Called with the session id and the exception on failure
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        *,
        auth: AuthMethod | None = None,
        verifier: Verifier | None = None,
        policy: Policy | None = None,
        resolver: Resolver | None = None,
        connect: ConnectFactory = default_connect,
        on_session_close: CloseCallback | None = None,
        on_session_error: ErrorCallback | None = None,
    ) -> None:
        self.config = config or ServerConfig()
        self.auth = auth or server_auth(self.config.auth, verifier)
        self.policy = policy or accept_all
        self.blacklist = Blacklist(
            self.config.blacklist, include_defaults=self.config.blacklist_defaults
        )
        self.stats = ProxyStats()
        self.sessions = SessionManager(
            self.blacklist,
            resolver or DNSResolver(),
            self.stats,
            connect=connect,
            connect_timeout=self.config.connect_timeout,
            idle_timeout=self.config.idle_timeout,
            on_close=on_session_close,
            on_error=on_session_error,
        )
        self._server: SocksProxy | None = None
        self._thread: threading.Thread | None = None
        self._serving = threading.Event()

    @property
    def address(self) -> tuple[str, int]:
        if self._server is None:
            msg = "Server is not listening"
            raise RuntimeError(msg)
        host, port = self._server.server_address[:2]
        return host, port

    @property
    def connection_count(self) -> int:
        return self._server.connection_count if self._server else 0

    def listen(self) -> tuple[str, int]:
        """Bind the listening socket; port 0 picks a free port."""
        if self._server is None:
            address = (self.config.listen_host, self.config.listen_port)
            self._server = SocksProxy(address, SocksHandler, socks=self)
            logger.info(f"SOCKS5 server listening on {self.address[0]}:{self.address[1]}")
        return self.address

    def serve_forever(self) -> None:
        """Serve until ``close`` is called from another thread."""
        self.listen()
        server = self._server
        if server is None:
            msg = "Server is not listening"
            raise RuntimeError(msg)
        self._serving.set()
        try:
            server.serve_forever(poll_interval=SHUTDOWN_POLL_INTERVAL)
        finally:
            self._serving.clear()

    def start(self) -> threading.Thread:
        """Serve in a background daemon thread."""
        self.listen()
        if self._thread is None:
            self._thread = threading.Thread(
                target=self.serve_forever, name="socks-relay-server", daemon=True
            )
            self._thread.start()
        return self._thread

    def handle_request(self, request: Request, stream: SocketStream) -> None:
        """Ask the policy about a CONNECT request and run the resulting session."""
        session = self.sessions.admit(request, stream)
        admission = session.admission
        try:
            self.policy(request, session.session_id, admission.accept, admission.deny)
        except Exception:
            logger.exception(f"Policy failed for session {session.session_id}, denying")
            admission.deny()

        if not admission.wait(self.config.decision_timeout):
            logger.debug(f"Session {session.session_id} not accepted")
        self.sessions.run(session)

    def kill_sessions(self) -> None:
        self.sessions.kill_sessions()

    def close(self) -> None:
        """Stop accepting connections; live sessions keep running."""
        if self._server is None:
            return
        if self._thread is not None or self._serving.is_set():
            self._server.shutdown()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self._server.server_close()
        self._server = None
        logger.info("SOCKS5 server closed")

    def __enter__(self) -> Self:
        self.listen()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
        self.kill_sessions()


def create_proxy_server(config: ServerConfig, **kwargs: Any) -> SocksServer:
    """Create a server and bind its listening socket."""
    server = SocksServer(config, **kwargs)
    server.listen()
    return server
