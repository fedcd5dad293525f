"""Tests for sessions, admission and the failure to reply-code mapping."""

import errno
import os
import socket
import threading

import pytest

from socks_relay.core.exceptions import DestinationBlacklistedError, DNSResolutionError
from socks_relay.core.lib.blacklist import Blacklist
from socks_relay.core.lib.session import (
    Admission,
    SessionManager,
    SessionState,
    default_connect,
    reply_for_error,
)
from socks_relay.core.protocol.constants import Command, ReplyCode
from socks_relay.core.protocol.server_parser import Request
from socks_relay.core.stream import SocketStream

from .conftest import recv_exactly

REPLY_SIZE = 10  # reply with an IPv4 bound address


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (socket.gaierror(socket.EAI_NONAME, "unknown"), ReplyCode.HOST_UNREACHABLE),
        (TimeoutError(), ReplyCode.HOST_UNREACHABLE),
        (OSError(errno.EHOSTUNREACH, "no route"), ReplyCode.HOST_UNREACHABLE),
        (OSError(errno.ENETUNREACH, "network down"), ReplyCode.NETWORK_UNREACHABLE),
        (ConnectionRefusedError(), ReplyCode.CONNECTION_REFUSED),
        (OSError(errno.ECONNREFUSED, "refused"), ReplyCode.CONNECTION_REFUSED),
        (DNSResolutionError("nope"), ReplyCode.HOST_UNREACHABLE),
        (DestinationBlacklistedError("private"), ReplyCode.NOT_ALLOWED),
        (OSError(errno.EACCES, "denied"), ReplyCode.GENERAL_FAILURE),
        (ValueError("boom"), ReplyCode.GENERAL_FAILURE),
    ],
)
def test_reply_for_error(exc, expected):
    assert reply_for_error(exc) is expected


class TestAdmission:
    def test_first_decision_wins(self):
        admission = Admission()
        admission.accept()
        admission.deny()
        assert admission.accepted is True
        assert admission.wait(0)

    def test_deny_then_accept(self):
        admission = Admission()
        admission.deny()
        admission.accept()
        assert admission.accepted is False

    def test_undecided_is_denied_on_timeout(self):
        admission = Admission()
        assert not admission.wait(0.01)
        assert admission.decided
        admission.accept()
        assert admission.accepted is False

    def test_accept_from_another_thread(self):
        admission = Admission()
        timer = threading.Timer(0.05, admission.accept)
        timer.start()
        assert admission.wait(5)
        timer.join()


class RecordingConnect:
    """Connect factory that records calls and delegates or raises."""

    def __init__(self, error: OSError | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, int]] = []

    def __call__(self, address, timeout):
        self.calls.append(address)
        if self.error is not None:
            raise self.error
        return default_connect(address, timeout)


@pytest.fixture
def events():
    return {"closed": [], "errors": []}


@pytest.fixture
def make_manager(fake_resolver, events):
    def factory(connect=None, **kwargs) -> SessionManager:
        return SessionManager(
            Blacklist(),
            fake_resolver,
            connect=connect or RecordingConnect(),
            connect_timeout=5,
            on_close=events["closed"].append,
            on_error=lambda sid, exc: events["errors"].append((sid, exc)),
            **kwargs,
        )

    return factory


def connect_request(host: str, port: int) -> Request:
    return Request(Command.CONNECT, host, port, src_addr="127.0.0.1", src_port=50000)


def run_in_thread(manager: SessionManager, session) -> threading.Thread:
    thread = threading.Thread(target=manager.run, args=(session,), daemon=True)
    thread.start()
    return thread


def test_denied_session_replies_not_allowed(stream_pair, make_manager, events):
    server, client = stream_pair
    manager = make_manager()
    session = manager.admit(connect_request("echo.test", 80), server)
    assert len(manager) == 1
    assert session.state is SessionState.PENDING

    session.admission.deny()
    manager.run(session)

    assert client.read_exactly(2) == b"\x05\x02"
    assert session.state is SessionState.CLOSED
    assert len(manager) == 0
    assert events["closed"] == [session.session_id]
    assert manager.connect.calls == []


def test_blacklisted_destination_is_refused_without_connecting(stream_pair, make_manager, events):
    server, client = stream_pair
    manager = make_manager()
    session = manager.admit(connect_request("intranet.test", 80), server)
    session.admission.accept()
    manager.run(session)

    assert recv_exactly(client.sock, REPLY_SIZE) == b"\x05\x02\x00\x01\x00\x00\x00\x00\x00\x00"
    assert manager.connect.calls == []
    ((sid, exc),) = events["errors"]
    assert sid == session.session_id
    assert isinstance(exc, DestinationBlacklistedError)


def test_refused_connect_replies_connection_refused(stream_pair, make_manager, events):
    server, client = stream_pair
    manager = make_manager(connect=RecordingConnect(ConnectionRefusedError()))
    session = manager.admit(connect_request("203.0.113.5", 9), server)
    session.admission.accept()
    manager.run(session)

    assert client.read_exactly(2) == b"\x05\x05"
    assert manager.connect.calls == [("203.0.113.5", 9)]
    assert events["closed"] == [session.session_id]


def test_unresolvable_destination_replies_host_unreachable(stream_pair, make_manager):
    server, client = stream_pair
    manager = make_manager()
    session = manager.admit(connect_request("missing.test", 80), server)
    session.admission.accept()
    manager.run(session)

    assert client.read_exactly(2) == b"\x05\x04"
    assert manager.connect.calls == []


def test_established_session_relays_bytes(stream_pair, make_manager, echo_server, echo_address):
    server, client = stream_pair
    manager = make_manager()
    session = manager.admit(connect_request("echo.test", echo_address[1]), server)
    session.admission.accept()
    thread = run_in_thread(manager, session)

    reply = client.read_exactly(REPLY_SIZE)
    assert reply[:4] == b"\x05\x00\x00\x01"
    assert reply[4:8] == socket.inet_aton("127.0.0.1")

    client.sendall(b"ping")
    assert client.read_exactly(4) == b"ping"
    assert manager.stats.total_bytes_upstream == 4

    client.close()
    thread.join(5)
    assert not thread.is_alive()
    assert echo_server.closed.wait(5)
    assert len(manager) == 0


def test_pipelined_payload_is_forwarded_first(stream_pair, make_manager, echo_address):
    server, client = stream_pair
    manager = make_manager()
    server.unread(b"early")
    session = manager.admit(connect_request("127.0.0.1", echo_address[1]), server)
    session.admission.accept()
    thread = run_in_thread(manager, session)

    client.read_exactly(REPLY_SIZE)
    assert client.read_exactly(5) == b"early"
    client.close()
    thread.join(5)


def test_kill_sessions_tears_down_relays(stream_pair, make_manager, echo_address, events):
    server, client = stream_pair
    manager = make_manager()
    session = manager.admit(connect_request("127.0.0.1", echo_address[1]), server)
    session.admission.accept()
    thread = run_in_thread(manager, session)
    client.read_exactly(REPLY_SIZE)

    manager.kill_sessions()
    thread.join(5)

    assert not thread.is_alive()
    assert len(manager) == 0
    assert events["closed"] == [session.session_id]
    assert client.recv() == b""


def test_close_session_is_idempotent(stream_pair, make_manager, events):
    server, _ = stream_pair
    manager = make_manager()
    session = manager.admit(connect_request("echo.test", 80), server)
    manager.close_session(session)
    manager.close_session(session)
    assert events["closed"] == [session.session_id]
    assert manager.stats.active_sessions == 0


HIGH_FD_FLOOR = 1500  # above FD_SETSIZE


@pytest.fixture
def high_fd_limit():
    resource = pytest.importorskip("resource")
    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    wanted = HIGH_FD_FLOOR + 200
    if hard != resource.RLIM_INFINITY and hard < wanted:
        pytest.skip(f"descriptor limit {hard} is too low")
    if soft != resource.RLIM_INFINITY and soft < wanted:
        resource.setrlimit(resource.RLIMIT_NOFILE, (wanted, hard))
    yield
    resource.setrlimit(resource.RLIMIT_NOFILE, (soft, hard))


def move_to_high_fd(sock: socket.socket) -> socket.socket:
    """Re-open ``sock`` on an unused descriptor number above HIGH_FD_FLOOR."""
    for target in range(HIGH_FD_FLOOR, HIGH_FD_FLOOR + 200):
        try:
            os.fstat(target)
        except OSError:
            break
    fd = os.dup2(sock.fileno(), target)
    moved = socket.socket(fileno=fd)
    moved.settimeout(sock.gettimeout())
    sock.close()
    return moved


def test_relay_with_descriptors_above_fd_setsize(high_fd_limit, make_manager, echo_address, events):
    left, right = socket.socketpair()
    client = move_to_high_fd(left)
    client.settimeout(5)
    inbound = SocketStream(move_to_high_fd(right))

    def connect(address, timeout):
        return move_to_high_fd(default_connect(address, timeout))

    manager = make_manager(connect=connect)
    session = manager.admit(connect_request("127.0.0.1", echo_address[1]), inbound)
    session.admission.accept()
    thread = run_in_thread(manager, session)

    try:
        assert recv_exactly(client, REPLY_SIZE)[:2] == b"\x05\x00"
        assert session.outbound.fileno() >= HIGH_FD_FLOOR
        client.sendall(b"ping")
        assert recv_exactly(client, 4) == b"ping"
    finally:
        client.close()
        thread.join(5)
    assert events["errors"] == []
