"""Client-side SOCKS5 handshake parser.

Mirror of the server parser for the replies a client receives:

    AWAITING_METHOD_SELECTION --MethodSelectedEvent--> AWAITING_AUTH_OUTCOME
    AWAITING_AUTH_OUTCOME --authenticated()--> AWAITING_CONNECT_REPLY
    AWAITING_CONNECT_REPLY --ConnectReplyEvent--> ESTABLISHED

Once established, bytes past the reply belong to the tunnel and are
returned by ``take_remainder``.
"""

from dataclasses import dataclass
from enum import Enum, auto

from socks_relay.core.exceptions import (
    AuthMethodMismatchError,
    ConnectReplyError,
    ProtocolVersionMismatchError,
    TruncatedInputError,
)

from .address import decode_address, decode_port
from .constants import REPLY_MESSAGES, SOCKS_VERSION, ReplyCode


class ClientState(Enum):
    AWAITING_METHOD_SELECTION = auto()
    AWAITING_AUTH_OUTCOME = auto()
    AWAITING_CONNECT_REPLY = auto()
    ESTABLISHED = auto()


@dataclass(frozen=True)
class MethodSelectedEvent:
    method: int


@dataclass(frozen=True)
class ConnectReplyEvent:
    bind_addr: str
    bind_port: int


ClientEvent = MethodSelectedEvent | ConnectReplyEvent


class ClientParser:
    """Incremental parser for the method selection and connect reply frames.

    Args:
        method: The single authentication method code the client advertised
    """

    def __init__(self, method: int) -> None:
        self.method = method
        self.state = ClientState.AWAITING_METHOD_SELECTION
        self._buffer = bytearray()

    def feed(self, data: bytes) -> ClientEvent | None:
        """Add received bytes and try to decode the frame expected next.

        Raises:
            AuthMethodMismatchError: If the server selected another method
            ConnectReplyError: If the server replied with a failure code
            SocksError: On any other malformed frame
        """
        if self.state not in (
            ClientState.AWAITING_METHOD_SELECTION,
            ClientState.AWAITING_CONNECT_REPLY,
        ):
            msg = f"Parser is not accepting input in state {self.state.name}"
            raise RuntimeError(msg)

        self._buffer += data
        if self.state is ClientState.AWAITING_METHOD_SELECTION:
            return self._parse_method_selection()
        return self._parse_reply()

    def authenticated(self) -> None:
        if self.state is not ClientState.AWAITING_AUTH_OUTCOME:
            msg = f"Cannot complete authentication in state {self.state.name}"
            raise RuntimeError(msg)
        self.state = ClientState.AWAITING_CONNECT_REPLY

    def take_remainder(self) -> bytes:
        remainder = bytes(self._buffer)
        self._buffer.clear()
        return remainder

    def eof(self) -> None:
        """Signal that the proxy closed the connection mid-handshake."""
        msg = f"Proxy closed the connection while in state {self.state.name}"
        raise TruncatedInputError(msg)

    def _check_version(self) -> None:
        if self._buffer[0] != SOCKS_VERSION:
            msg = f"Incompatible SOCKS protocol version: {self._buffer[0]}"
            raise ProtocolVersionMismatchError(msg)

    def _parse_method_selection(self) -> MethodSelectedEvent | None:
        if not self._buffer:
            return None
        self._check_version()
        if len(self._buffer) < 2:
            return None

        selected = self._buffer[1]
        if selected != self.method:
            msg = f"Authentication method mismatch: offered {self.method:#04x}, got {selected:#04x}"
            raise AuthMethodMismatchError(msg)

        del self._buffer[:2]
        self.state = ClientState.AWAITING_AUTH_OUTCOME
        return MethodSelectedEvent(selected)

    def _parse_reply(self) -> ConnectReplyEvent | None:
        if not self._buffer:
            return None
        self._check_version()
        if len(self._buffer) < 2:
            return None

        raw_reply = self._buffer[1]
        if raw_reply != ReplyCode.SUCCESS:
            # Failure replies may be cut short by the server, so don't wait for the rest
            try:
                reply = ReplyCode(raw_reply)
            except ValueError:
                raise ConnectReplyError(f"Unknown reply code: {raw_reply:#04x}") from None
            raise ConnectReplyError(REPLY_MESSAGES[reply], reply_code=reply)

        if len(self._buffer) < 4:
            return None
        try:
            bind_addr, used = decode_address(self._buffer, 3)
            bind_port, port_len = decode_port(self._buffer, 3 + used)
        except TruncatedInputError:
            return None

        del self._buffer[: 3 + used + port_len]
        self.state = ClientState.ESTABLISHED
        return ConnectReplyEvent(bind_addr, bind_port)
