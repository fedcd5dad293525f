"""Tests for the authentication capabilities."""

import pytest

from socks_relay.core.auth import NoAuth, UserPassAuth, client_auth, server_auth, static_verifier
from socks_relay.core.config import Credentials
from socks_relay.core.exceptions import (
    AuthProtocolMismatchError,
    MalformedCredentialsError,
    TruncatedInputError,
)
from socks_relay.core.protocol.messages import build_credentials

ALICE = Credentials("alice", "wonderland")


def test_credentials_wire_format():
    assert build_credentials("alice", "wonderland") == b"\x01\x05alice\x0awonderland"


def test_no_auth_consumes_nothing(stream_pair):
    server, client = stream_pair
    client.sendall(b"\x05\x01\x00")
    assert NoAuth().server_handshake(server)
    assert NoAuth().client_handshake(client)
    assert server.read_exactly(3) == b"\x05\x01\x00"


@pytest.mark.parametrize(("accepted", "reply"), [(True, b"\x01\x00"), (False, b"\x01\x01")])
def test_server_writes_verifier_outcome(stream_pair, accepted, reply):
    server, client = stream_pair
    seen = []

    def verifier(username, password):
        seen.append((username, password))
        return accepted

    client.sendall(build_credentials("alice", "wonderland"))
    assert UserPassAuth(verifier=verifier).server_handshake(server) is accepted
    assert seen == [("alice", "wonderland")]
    assert client.read_exactly(2) == reply


def test_server_reads_fragmented_credentials(stream_pair):
    server, client = stream_pair
    frame = build_credentials("alice", "wonderland")
    for i in range(len(frame)):
        client.sendall(frame[i : i + 1])
    assert UserPassAuth(verifier=static_verifier(ALICE)).server_handshake(server)


def test_server_keeps_pipelined_request(stream_pair):
    server, client = stream_pair
    request = b"\x05\x01\x00\x01\x7f\x00\x00\x01\x00\x50"
    client.sendall(build_credentials("alice", "wonderland") + request)
    assert UserPassAuth(verifier=static_verifier(ALICE)).server_handshake(server)
    assert server.read_exactly(len(request)) == request


@pytest.mark.parametrize(
    "frame",
    [
        b"\x02\x05alice\x0awonderland",  # wrong version
        b"\x01\x00\x0awonderland",  # empty username
        b"\x01\x05alice\x00",  # empty password
    ],
)
def test_server_rejects_malformed_credentials(stream_pair, frame):
    server, client = stream_pair
    client.sendall(frame)
    with pytest.raises(MalformedCredentialsError):
        UserPassAuth(verifier=lambda u, p: True).server_handshake(server)


def test_server_truncated_credentials(stream_pair):
    server, client = stream_pair
    client.sendall(b"\x01\x05ali")
    client.sock.shutdown(1)
    with pytest.raises(TruncatedInputError):
        UserPassAuth(verifier=lambda u, p: True).server_handshake(server)


def test_client_sends_credentials_and_reads_status(stream_pair):
    server, client = stream_pair
    server.sendall(b"\x01\x00")
    assert UserPassAuth(credentials=ALICE).client_handshake(client)
    assert server.read_exactly(17) == b"\x01\x05alice\x0awonderland"


def test_client_rejected(stream_pair):
    server, client = stream_pair
    server.sendall(b"\x01\x01")
    assert not UserPassAuth(credentials=ALICE).client_handshake(client)


def test_client_rejects_wrong_reply_version(stream_pair):
    server, client = stream_pair
    server.sendall(b"\x05\x00")
    with pytest.raises(AuthProtocolMismatchError):
        UserPassAuth(credentials=ALICE).client_handshake(client)


def test_client_preserves_bytes_after_reply(stream_pair):
    server, client = stream_pair
    server.sendall(b"\x01\x00\x05\x00\x00")
    assert UserPassAuth(credentials=ALICE).client_handshake(client)
    assert client.read_exactly(3) == b"\x05\x00\x00"


def test_static_verifier():
    verify = static_verifier(ALICE)
    assert verify("alice", "wonderland")
    assert not verify("alice", "looking-glass")
    assert not verify("bob", "wonderland")


def test_auth_selection_from_config():
    assert isinstance(server_auth(None), NoAuth)
    assert isinstance(client_auth(None), NoAuth)
    assert server_auth(ALICE).code == 0x02
    assert client_auth(ALICE).credentials == ALICE

    custom = server_auth(ALICE, verifier=lambda u, p: False)
    assert custom.verifier("alice", "wonderland") is False
