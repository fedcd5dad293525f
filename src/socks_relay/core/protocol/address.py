"""Encoding and decoding of SOCKS5 address fields.

An address field is one ATYP byte followed by the address body:
- IPv4: 4 raw bytes, rendered as dotted decimal
- Domain name: 1 length byte (1-255) followed by the name
- IPv6: 16 raw bytes, rendered as 8 colon-separated lowercase hex groups

Ports are always 2 bytes, big-endian.

Example:
    data = encode_address("93.184.216.34") + encode_port(80)
    host, used = decode_address(data)
    port, _ = decode_port(data, used)
"""

import ipaddress
import socket
import struct
from typing import Final

from socks_relay.core.exceptions import TruncatedInputError, UnsupportedAddressTypeError
from socks_relay.core.protocol.constants import AddressType

MAX_DOMAIN_LENGTH: Final = 255
MAX_PORT: Final = 0xFFFF

_BODY_LENGTHS: Final = {AddressType.IPV4: 4, AddressType.IPV6: 16}


def address_type(host: str) -> AddressType:
    """Pick the ATYP for a host from its literal syntax."""
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return AddressType.DOMAIN
    return AddressType.IPV4 if ip.version == 4 else AddressType.IPV6


def format_ipv6(raw: bytes) -> str:
    """Render 16 raw bytes as eight colon-separated hex groups."""
    return ":".join(f"{group:x}" for group in struct.unpack("!8H", raw))


def _require(data: bytes, offset: int, size: int, field: str) -> None:
    if len(data) - offset < size:
        msg = f"{field} needs {size} bytes, {max(len(data) - offset, 0)} available"
        raise TruncatedInputError(msg)


def encode_address(host: str) -> bytes:
    """Encode a host as an ATYP byte followed by the address body.

    Args:
        host: IPv4 literal, IPv6 literal or domain name

    Returns:
        bytes: Encoded address field

    Raises:
        ValueError: If a domain name is empty or longer than 255 bytes
    """
    atyp = address_type(host)
    if atyp is AddressType.IPV4:
        return bytes([atyp]) + socket.inet_pton(socket.AF_INET, host)
    if atyp is AddressType.IPV6:
        return bytes([atyp]) + socket.inet_pton(socket.AF_INET6, host)

    name = host.encode("utf-8")
    if not 1 <= len(name) <= MAX_DOMAIN_LENGTH:
        msg = f"Domain name must be 1-{MAX_DOMAIN_LENGTH} bytes, got {len(name)}"
        raise ValueError(msg)
    return bytes([atyp, len(name)]) + name


def decode_address(data: bytes, offset: int = 0) -> tuple[str, int]:
    """Decode an address field starting at ``offset``.

    Args:
        data: Buffer holding the field
        offset: Position of the ATYP byte

    Returns:
        tuple[str, int]: The address string and the number of bytes consumed,
            ATYP byte included

    Raises:
        UnsupportedAddressTypeError: If the ATYP byte is unknown or a domain
            name is not valid UTF-8
        TruncatedInputError: If the buffer ends before the field does
    """
    _require(data, offset, 1, "Address type")
    raw_type = data[offset]
    try:
        atyp = AddressType(raw_type)
    except ValueError:
        msg = f"Unsupported address type: {raw_type:#04x}"
        raise UnsupportedAddressTypeError(msg) from None

    if atyp is AddressType.DOMAIN:
        _require(data, offset + 1, 1, "Domain length")
        length = data[offset + 1]
        if length == 0:
            msg = "Domain name length is zero"
            raise UnsupportedAddressTypeError(msg)
        _require(data, offset + 2, length, "Domain name")
        name = bytes(data[offset + 2 : offset + 2 + length])
        try:
            return name.decode("utf-8"), 2 + length
        except UnicodeDecodeError as e:
            msg = f"Domain name is not valid UTF-8: {name!r}"
            raise UnsupportedAddressTypeError(msg) from e

    size = _BODY_LENGTHS[atyp]
    _require(data, offset + 1, size, atyp.name)
    raw = bytes(data[offset + 1 : offset + 1 + size])
    if atyp is AddressType.IPV4:
        return socket.inet_ntop(socket.AF_INET, raw), 1 + size
    return format_ipv6(raw), 1 + size


def encode_port(port: int) -> bytes:
    """Encode a port as 2 big-endian bytes."""
    if not 0 <= port <= MAX_PORT:
        msg = f"Port out of range: {port}"
        raise ValueError(msg)
    return struct.pack("!H", port)


def decode_port(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode a 2-byte port, returning ``(port, 2)``."""
    _require(data, offset, 2, "Port")
    (port,) = struct.unpack_from("!H", data, offset)
    return port, 2
