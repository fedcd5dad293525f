"""Builders for SOCKS5 frames.

Layouts (RFC 1928 / RFC 1929):

    greeting            VER | NMETHODS | METHODS
    method selection    VER | METHOD
    request             VER | CMD | RSV | ATYP | DST.ADDR | DST.PORT
    reply               VER | REP | RSV | ATYP | BND.ADDR | BND.PORT
    credentials         VER(1) | ULEN | UNAME | PLEN | PASSWD
    credentials reply   VER(1) | STATUS
"""

import struct
from collections.abc import Iterable

from .address import encode_address, encode_port
from .constants import SOCKS_VERSION, USERPASS_VERSION, Command, ReplyCode

# Bound address used in replies that carry no meaningful address
UNSPECIFIED_ADDRESS = "0.0.0.0"


def build_greeting(methods: Iterable[int]) -> bytes:
    """Build a client greeting advertising ``methods``."""
    codes = bytes(methods)
    if not 1 <= len(codes) <= 255:
        msg = f"A greeting carries 1-255 methods, got {len(codes)}"
        raise ValueError(msg)
    return struct.pack("!BB", SOCKS_VERSION, len(codes)) + codes


def build_method_selection(method: int) -> bytes:
    return struct.pack("!BB", SOCKS_VERSION, method)


def build_request(command: Command, host: str, port: int) -> bytes:
    """Build a request frame for ``host:port``."""
    header = struct.pack("!BBB", SOCKS_VERSION, command, 0x00)
    return header + encode_address(host) + encode_port(port)


def build_reply(
    reply: ReplyCode, bind_addr: str = UNSPECIFIED_ADDRESS, bind_port: int = 0
) -> bytes:
    """Build a reply frame carrying the bound address of the outbound socket."""
    header = struct.pack("!BBB", SOCKS_VERSION, reply, 0x00)
    return header + encode_address(bind_addr) + encode_port(bind_port)


def build_credentials(username: str, password: str) -> bytes:
    """Build a username/password sub-negotiation frame.

    Raises:
        ValueError: If either field is empty or longer than 255 bytes
    """
    user = username.encode("utf-8")
    passwd = password.encode("utf-8")
    for name, value in (("username", user), ("password", passwd)):
        if not 1 <= len(value) <= 255:
            msg = f"The {name} must be 1-255 bytes, got {len(value)}"
            raise ValueError(msg)
    return bytes([USERPASS_VERSION, len(user)]) + user + bytes([len(passwd)]) + passwd


def build_credentials_reply(accepted: bool) -> bytes:
    return bytes([USERPASS_VERSION, 0x00 if accepted else 0x01])
