"""Tests for the server-side handshake parser."""

import pytest

from socks_relay.core.exceptions import (
    EmptyMethodListError,
    ProtocolVersionMismatchError,
    TruncatedInputError,
    UnsupportedAddressTypeError,
    UnsupportedCommandError,
)
from socks_relay.core.protocol.constants import Command, ReplyCode
from socks_relay.core.protocol.messages import build_request
from socks_relay.core.protocol.server_parser import (
    MethodsEvent,
    Request,
    RequestEvent,
    ServerParser,
    ServerState,
)


def parser_awaiting_request() -> ServerParser:
    parser = ServerParser()
    assert parser.feed(b"\x05\x01\x00") == MethodsEvent((0,))
    parser.authenticated()
    return parser


def test_greeting_in_one_delivery():
    parser = ServerParser()
    assert parser.feed(b"\x05\x02\x00\x02") == MethodsEvent((0x00, 0x02))
    assert parser.state is ServerState.AWAITING_AUTH


def test_greeting_byte_by_byte():
    parser = ServerParser()
    frame = b"\x05\x02\x00\x02"
    for byte in frame[:-1]:
        assert parser.feed(bytes([byte])) is None
    assert parser.feed(frame[-1:]) == MethodsEvent((0x00, 0x02))


def test_greeting_wrong_version():
    with pytest.raises(ProtocolVersionMismatchError):
        ServerParser().feed(b"\x04\x01\x00")


def test_greeting_version_checked_before_rest_arrives():
    with pytest.raises(ProtocolVersionMismatchError):
        ServerParser().feed(b"\x04")


def test_greeting_empty_method_list():
    with pytest.raises(EmptyMethodListError):
        ServerParser().feed(b"\x05\x00")


def test_request_ipv4():
    parser = parser_awaiting_request()
    event = parser.feed(b"\x05\x01\x00\x01\x7f\x00\x00\x01\x00\x50")
    assert event == RequestEvent(Request(Command.CONNECT, "127.0.0.1", 80))
    assert parser.state is ServerState.RELAYING


def test_request_domain_split_across_deliveries():
    parser = parser_awaiting_request()
    frame = build_request(Command.CONNECT, "example.com", 443)
    assert parser.feed(frame[:6]) is None
    assert parser.feed(frame[6:-1]) is None
    event = parser.feed(frame[-1:])
    assert event.request.dst_addr == "example.com"
    assert event.request.dst_port == 443


def test_request_ipv6():
    parser = parser_awaiting_request()
    event = parser.feed(build_request(Command.CONNECT, "2001:db8::1", 8080))
    assert event.request.dst_addr == "2001:db8:0:0:0:0:0:1"
    assert event.request.dst_port == 8080


@pytest.mark.parametrize("command", [Command.BIND, Command.UDP_ASSOCIATE])
def test_request_other_commands_are_decoded(command):
    parser = parser_awaiting_request()
    event = parser.feed(build_request(command, "10.0.0.1", 53))
    assert event.request.command is command


def test_request_unknown_command():
    parser = parser_awaiting_request()
    with pytest.raises(UnsupportedCommandError) as excinfo:
        parser.feed(b"\x05\x09\x00\x01\x7f\x00\x00\x01\x00\x50")
    assert excinfo.value.reply_code is ReplyCode.COMMAND_NOT_SUPPORTED


def test_request_unknown_address_type():
    parser = parser_awaiting_request()
    with pytest.raises(UnsupportedAddressTypeError) as excinfo:
        parser.feed(b"\x05\x01\x00\x05\x7f\x00\x00\x01\x00\x50")
    assert excinfo.value.reply_code is ReplyCode.ADDRESS_TYPE_NOT_SUPPORTED


def test_request_wrong_version():
    parser = parser_awaiting_request()
    with pytest.raises(ProtocolVersionMismatchError):
        parser.feed(b"\x04\x01\x00\x01\x7f\x00\x00\x01\x00\x50")


def test_pipelined_frames_leave_remainder():
    parser = ServerParser()
    request = build_request(Command.CONNECT, "127.0.0.1", 80)
    assert parser.feed(b"\x05\x01\x00" + request + b"payload") == MethodsEvent((0,))
    parser.authenticated()
    event = parser.feed(parser.take_remainder())
    assert event.request.dst_port == 80
    assert parser.take_remainder() == b"payload"
    assert parser.take_remainder() == b""


def test_request_before_authentication_is_rejected():
    parser = ServerParser()
    parser.feed(b"\x05\x01\x00")
    with pytest.raises(RuntimeError):
        parser.feed(b"\x05\x01\x00\x01\x7f\x00\x00\x01\x00\x50")


def test_input_after_request_is_rejected():
    parser = parser_awaiting_request()
    parser.feed(b"\x05\x01\x00\x01\x7f\x00\x00\x01\x00\x50")
    with pytest.raises(RuntimeError):
        parser.feed(b"more")


def test_authenticated_only_once():
    parser = parser_awaiting_request()
    with pytest.raises(RuntimeError):
        parser.authenticated()


def test_eof_with_partial_frame():
    parser = ServerParser()
    parser.feed(b"\x05\x03\x00")
    with pytest.raises(TruncatedInputError):
        parser.eof()


def test_eof_between_frames_is_clean():
    parser = ServerParser()
    parser.feed(b"\x05\x01\x00")
    parser.eof()
