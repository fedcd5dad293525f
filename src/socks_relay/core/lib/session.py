"""Session relay manager.

A session is the lifecycle of one accepted CONNECT request:

    PENDING      request decoded, waiting for the policy to accept or deny
    CONNECTING   resolving the destination and opening the outbound socket
    ESTABLISHED  success reply sent, bytes are relayed in both directions
    CLOSED       both sockets closed, session removed from the registry

The manager owns the session registry. Every session runs in the thread of
its inbound connection; the registry is shared and guarded by a lock so that
bulk teardown can run from any thread.

Outbound failures never escape the manager: they are mapped to a SOCKS5
reply code, written back to the client and the session is closed.
"""

import contextlib
import errno
import selectors
import socket
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto

from loguru import logger

from socks_relay.core.exceptions import (
    DestinationBlacklistedError,
    DNSResolutionError,
    OutboundConnectError,
    SocksError,
)
from socks_relay.core.lib.blacklist import Blacklist
from socks_relay.core.lib.dns_handler import Resolver, is_ip_literal
from socks_relay.core.lib.proxy_stats import ProxyStats
from socks_relay.core.protocol.constants import ReplyCode
from socks_relay.core.protocol.messages import build_reply
from socks_relay.core.protocol.server_parser import Request
from socks_relay.core.stream import BUFFER_SIZE, SocketStream

ConnectFactory = Callable[[tuple[str, int], float | None], socket.socket]
CloseCallback = Callable[[str], None]
ErrorCallback = Callable[[str, BaseException], None]

_HOST_UNREACHABLE_ERRNOS = {errno.EHOSTUNREACH, errno.EHOSTDOWN, errno.ETIMEDOUT}


class SessionState(Enum):
    PENDING = auto()
    CONNECTING = auto()
    ESTABLISHED = auto()
    CLOSED = auto()


class Admission:
    """One-shot accept/deny decision for a request.

    The first call to ``accept`` or ``deny`` decides; later calls are no-ops.
    Both may be called from any thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._decided = threading.Event()
        self.accepted: bool | None = None

    @property
    def decided(self) -> bool:
        return self._decided.is_set()

    def accept(self) -> None:
        self._decide(accepted=True)

    def deny(self) -> None:
        self._decide(accepted=False)

    def _decide(self, *, accepted: bool) -> None:
        with self._lock:
            if self.accepted is not None:
                return
            self.accepted = accepted
        self._decided.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until decided; an undecided request is denied on timeout."""
        if not self._decided.wait(timeout):
            self.deny()
        return bool(self.accepted)


@dataclass(eq=False)
class Session:
    session_id: str
    request: Request
    inbound: SocketStream
    admission: Admission = field(default_factory=Admission)
    outbound: socket.socket | None = None
    state: SessionState = SessionState.PENDING


def reply_for_error(exc: BaseException) -> ReplyCode:
    """Map a resolution or connect failure to a SOCKS5 reply code."""
    if isinstance(exc, SocksError):
        return exc.reply_code
    if isinstance(exc, socket.gaierror | TimeoutError):
        return ReplyCode.HOST_UNREACHABLE
    if isinstance(exc, ConnectionRefusedError):
        return ReplyCode.CONNECTION_REFUSED
    if isinstance(exc, OSError):
        if exc.errno == errno.ENETUNREACH:
            return ReplyCode.NETWORK_UNREACHABLE
        if exc.errno in _HOST_UNREACHABLE_ERRNOS:
            return ReplyCode.HOST_UNREACHABLE
        if exc.errno == errno.ECONNREFUSED:
            return ReplyCode.CONNECTION_REFUSED
    return ReplyCode.GENERAL_FAILURE


def default_connect(address: tuple[str, int], timeout: float | None) -> socket.socket:
    return socket.create_connection(address, timeout=timeout)


class SessionManager:
    """Owns outbound connections and relays bytes for accepted requests.

    Args:
        blacklist: Destination ranges to refuse
        resolver: Resolves domain-name destinations
        stats: Statistics of the owning server
        connect: Opens the outbound socket, ``(address, timeout) -> socket``
        connect_timeout: Seconds allowed for the outbound connect
        idle_timeout: Seconds a relay may stay idle (None = forever)
        on_close: Called with the session id when a session closes
        on_error: Called with the session id and exception when a session fails
    """

    def __init__(
        self,
        blacklist: Blacklist,
        resolver: Resolver,
        stats: ProxyStats | None = None,
        *,
        connect: ConnectFactory = default_connect,
        connect_timeout: float | None = None,
        idle_timeout: float | None = None,
        on_close: CloseCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> None:
        self.blacklist = blacklist
        self.resolver = resolver
        self.stats = stats or ProxyStats()
        self.connect = connect
        self.connect_timeout = connect_timeout
        self.idle_timeout = idle_timeout
        self.on_close = on_close
        self.on_error = on_error
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    @property
    def sessions(self) -> dict[str, Session]:
        """Snapshot of the registry."""
        with self._lock:
            return dict(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def admit(self, request: Request, inbound: SocketStream) -> Session:
        """Register a pending session for a decoded request.

        The returned session's ``admission`` holds the one-shot
        accept/deny pair handed to the embedding policy.
        """
        session = Session(session_id=str(uuid.uuid4()), request=request, inbound=inbound)
        with self._lock:
            self._sessions[session.session_id] = session
        self.stats.session_started()
        logger.debug(
            f"Session {session.session_id} pending: {request.src_addr}:{request.src_port} "
            f"-> {request.dst_addr}:{request.dst_port}"
        )
        return session

    def run(self, session: Session) -> None:
        """Carry out the admission decision and relay until either side closes."""
        try:
            if session.admission.accepted:
                self.establish(session)
            else:
                logger.info(
                    f"Session {session.session_id} denied by policy: "
                    f"{session.request.dst_addr}:{session.request.dst_port}"
                )
                self._send_reply(session, ReplyCode.NOT_ALLOWED)
        finally:
            self.close_session(session)

    def establish(self, session: Session) -> None:
        """Resolve, check the blacklist, connect, reply and relay."""
        if session.state is not SessionState.PENDING:
            return
        session.state = SessionState.CONNECTING
        request = session.request

        try:
            outbound = self._open_outbound(request)
        except SocksError as exc:
            logger.info(
                f"Session {session.session_id} to {request.dst_addr}:{request.dst_port} "
                f"failed: {exc}"
            )
            self._send_reply(session, exc.reply_code)
            self._notify_error(session, exc)
            return

        session.outbound = outbound
        session.state = SessionState.ESTABLISHED

        bind_addr, bind_port = outbound.getsockname()[:2]
        try:
            session.inbound.sendall(build_reply(ReplyCode.SUCCESS, bind_addr, bind_port))
        except OSError as exc:
            logger.debug(f"Session {session.session_id} client went away before the reply: {exc}")
            return

        logger.info(
            f"Session {session.session_id} established: "
            f"{request.src_addr}:{request.src_port} -> {request.dst_addr}:{request.dst_port}"
        )
        self.relay(session)

    def _resolve(self, request: Request) -> str:
        if is_ip_literal(request.dst_addr):
            return request.dst_addr
        try:
            return self.resolver.resolve(request.dst_addr)
        except DNSResolutionError:
            raise
        except OSError as e:
            msg = f"DNS resolution failed for {request.dst_addr}: {e}"
            raise DNSResolutionError(msg) from e

    def _open_outbound(self, request: Request) -> socket.socket:
        """Open the outbound socket, raising SocksError with the reply to send."""
        address = self._resolve(request)

        network = self.blacklist.match(address)
        if network is not None:
            msg = f"Destination {request.dst_addr} ({address}) is in blacklisted range {network}"
            raise DestinationBlacklistedError(msg)

        try:
            outbound = self.connect((address, request.dst_port), self.connect_timeout)
        except OSError as e:
            msg = f"Connect to {address}:{request.dst_port} failed: {e}"
            raise OutboundConnectError(msg, reply_code=reply_for_error(e)) from e
        outbound.settimeout(None)
        return outbound

    def relay(self, session: Session) -> None:
        """Copy bytes in both directions until either side closes or errors."""
        inbound = session.inbound
        outbound = session.outbound
        if outbound is None:
            return

        try:
            # Payload the client pipelined behind its request
            while inbound.has_pending:
                data = inbound.recv()
                outbound.sendall(data)
                self.stats.update_bytes(upstream=len(data))

            with selectors.DefaultSelector() as selector:
                selector.register(inbound.sock, selectors.EVENT_READ)
                selector.register(outbound, selectors.EVENT_READ)
                while True:
                    events = selector.select(self.idle_timeout)
                    if not events:
                        logger.debug(f"Session {session.session_id} idle timeout")
                        return

                    for key, _ in events:
                        data = key.fileobj.recv(BUFFER_SIZE)
                        if not data:
                            return
                        if key.fileobj is outbound:
                            inbound.sendall(data)
                            self.stats.update_bytes(downstream=len(data))
                        else:
                            outbound.sendall(data)
                            self.stats.update_bytes(upstream=len(data))
        except OSError as exc:
            if session.state is not SessionState.CLOSED:
                logger.debug(f"Session {session.session_id} relay error: {exc}")
                self._notify_error(session, exc)
        except ValueError:
            # A socket closed under the selector is only expected during teardown
            if session.state is not SessionState.CLOSED:
                raise

    def close_session(self, session: Session) -> None:
        """Close both sides of a session and drop it from the registry."""
        with self._lock:
            if session.state is SessionState.CLOSED:
                return
            session.state = SessionState.CLOSED
            self._sessions.pop(session.session_id, None)

        session.admission.deny()
        session.inbound.close()
        if session.outbound is not None:
            with contextlib.suppress(OSError):
                session.outbound.shutdown(socket.SHUT_RDWR)
            with contextlib.suppress(OSError):
                session.outbound.close()
        self.stats.session_ended()
        logger.debug(f"Session {session.session_id} closed")

        if self.on_close is not None:
            try:
                self.on_close(session.session_id)
            except Exception:
                logger.exception("Session close callback failed")

    def kill_sessions(self) -> None:
        """Tear down every live session.

        Sockets are shut down rather than closed so that each session's own
        thread wakes up, finishes its relay loop and closes its session.
        """
        with self._lock:
            snapshot = list(self._sessions.values())
        for session in snapshot:
            session.admission.deny()
            session.inbound.shutdown()
            if session.outbound is not None:
                with contextlib.suppress(OSError):
                    session.outbound.shutdown(socket.SHUT_RDWR)
        if snapshot:
            logger.info(f"Tearing down {len(snapshot)} session(s)")

    def _send_reply(self, session: Session, reply: ReplyCode) -> None:
        with contextlib.suppress(OSError):
            session.inbound.sendall(build_reply(reply))

    def _notify_error(self, session: Session, exc: BaseException) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(session.session_id, exc)
        except Exception:
            logger.exception("Session error callback failed")
