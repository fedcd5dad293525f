"""Server-side SOCKS5 handshake parser.

The parser is a per-connection state machine that consumes inbound bytes
and emits typed events. It never touches a socket: the connection handler
feeds it whatever ``recv`` returned and acts on the events.

States move strictly forward:

    AWAITING_GREETING --MethodsEvent--> AWAITING_AUTH
    AWAITING_AUTH --authenticated()--> AWAITING_REQUEST
    AWAITING_REQUEST --RequestEvent--> RELAYING

Bytes may arrive split across deliveries or several frames may arrive in
one delivery. Incomplete frames are buffered until they are complete, and
bytes past the end of an emitted frame are kept for ``take_remainder``.
"""

from dataclasses import dataclass
from enum import Enum, auto

from socks_relay.core.exceptions import (
    EmptyMethodListError,
    ProtocolVersionMismatchError,
    TruncatedInputError,
    UnsupportedCommandError,
)

from .address import decode_address, decode_port
from .constants import SOCKS_VERSION, Command


class ServerState(Enum):
    AWAITING_GREETING = auto()
    AWAITING_AUTH = auto()
    AWAITING_REQUEST = auto()
    RELAYING = auto()


@dataclass(frozen=True)
class Request:
    """A decoded SOCKS5 request.

    Attributes:
        command: Requested command
        dst_addr: Destination as an IPv4/IPv6 literal or domain name
        dst_port: Destination port
        src_addr: Client address, filled in by the server
        src_port: Client port, filled in by the server
    """

    command: Command
    dst_addr: str
    dst_port: int
    src_addr: str | None = None
    src_port: int | None = None


@dataclass(frozen=True)
class MethodsEvent:
    methods: tuple[int, ...]


@dataclass(frozen=True)
class RequestEvent:
    request: Request


ServerEvent = MethodsEvent | RequestEvent


class ServerParser:
    """Incremental parser for the greeting and request frames."""

    def __init__(self) -> None:
        self.state = ServerState.AWAITING_GREETING
        self._buffer = bytearray()

    def feed(self, data: bytes) -> ServerEvent | None:
        """Add inbound bytes and try to decode the frame expected next.

        Args:
            data: Bytes received from the client

        Returns:
            ServerEvent | None: The decoded event, or None until the frame
                is complete

        Raises:
            SocksError: On a malformed frame; the connection is unusable
            RuntimeError: If the parser is not expecting a frame
        """
        if self.state not in (ServerState.AWAITING_GREETING, ServerState.AWAITING_REQUEST):
            msg = f"Parser is not accepting input in state {self.state.name}"
            raise RuntimeError(msg)

        self._buffer += data
        if self.state is ServerState.AWAITING_GREETING:
            return self._parse_greeting()
        return self._parse_request()

    def authenticated(self) -> None:
        """Mark authentication as complete so the request can be parsed."""
        if self.state is not ServerState.AWAITING_AUTH:
            msg = f"Cannot complete authentication in state {self.state.name}"
            raise RuntimeError(msg)
        self.state = ServerState.AWAITING_REQUEST

    def take_remainder(self) -> bytes:
        """Return and clear bytes received past the last emitted frame."""
        remainder = bytes(self._buffer)
        self._buffer.clear()
        return remainder

    def eof(self) -> None:
        """Signal end of input; a partially received frame is an error."""
        if self._buffer:
            msg = f"Connection closed with {len(self._buffer)} bytes of an incomplete frame"
            raise TruncatedInputError(msg)

    def _check_version(self) -> None:
        if self._buffer[0] != SOCKS_VERSION:
            msg = f"Incompatible SOCKS protocol version: {self._buffer[0]}"
            raise ProtocolVersionMismatchError(msg)

    def _parse_greeting(self) -> MethodsEvent | None:
        if not self._buffer:
            return None
        self._check_version()
        if len(self._buffer) < 2:
            return None

        nmethods = self._buffer[1]
        if nmethods == 0:
            msg = "Unexpected empty methods list"
            raise EmptyMethodListError(msg)
        if len(self._buffer) < 2 + nmethods:
            return None

        methods = tuple(self._buffer[2 : 2 + nmethods])
        del self._buffer[: 2 + nmethods]
        self.state = ServerState.AWAITING_AUTH
        return MethodsEvent(methods)

    def _parse_request(self) -> RequestEvent | None:
        if not self._buffer:
            return None
        self._check_version()
        if len(self._buffer) < 4:
            return None

        raw_cmd = self._buffer[1]
        try:
            command = Command(raw_cmd)
        except ValueError:
            msg = f"Invalid request command: {raw_cmd:#04x}"
            raise UnsupportedCommandError(msg) from None

        # Byte 2 is reserved
        try:
            dst_addr, used = decode_address(self._buffer, 3)
            dst_port, port_len = decode_port(self._buffer, 3 + used)
        except TruncatedInputError:
            return None

        del self._buffer[: 3 + used + port_len]
        self.state = ServerState.RELAYING
        return RequestEvent(Request(command=command, dst_addr=dst_addr, dst_port=dst_port))
