"""SOCKS5 connection handler for the proxy server.

The handler drives one inbound connection through the handshake:
- Greeting and method selection
- Authentication with the server's auth method
- Request decoding
- Hand-over of accepted CONNECT requests to the server, which asks the
  embedding policy and lets the session manager relay the bytes

Framing errors are fatal to the connection. When the client is waiting for
a request reply, a best-effort failure reply is written before closing.

Example:
    # The handler is automatically used by the SocksProxy server class
    server = SocksProxy((host, port), SocksHandler, socks=socks_server)
    server.serve_forever()
"""

import contextlib
import dataclasses
import socketserver
from typing import TYPE_CHECKING

from loguru import logger

from socks_relay.core.exceptions import (
    AuthenticationFailedError,
    SocksError,
    UnsupportedCommandError,
)
from socks_relay.core.protocol.constants import NO_ACCEPTABLE_METHODS, Command
from socks_relay.core.protocol.messages import build_method_selection, build_reply
from socks_relay.core.protocol.server_parser import (
    MethodsEvent,
    Request,
    RequestEvent,
    ServerEvent,
    ServerParser,
    ServerState,
)
from socks_relay.core.stream import SocketStream

if TYPE_CHECKING:
    from .proxy_server import SocksProxy


class SocksHandler(socketserver.BaseRequestHandler):
    """Handle incoming SOCKS5 connections."""

    server: "SocksProxy"

    def setup(self) -> None:
        self.stream = SocketStream(self.request)
        self.parser = ServerParser()
        host, port = self.client_address[:2]
        self.peer = f"{host}:{port}"

    def _next_event(self) -> ServerEvent | None:
        """Read until the parser emits an event; None if the client hung up cleanly."""
        while True:
            data = self.stream.recv()
            if not data:
                self.parser.eof()
                return None
            event = self.parser.feed(data)
            if event is not None:
                # Whatever followed the frame belongs to the next stage
                self.stream.unread(self.parser.take_remainder())
                return event

    def _negotiate(self) -> bool:
        """Perform method selection and authentication."""
        event = self._next_event()
        if not isinstance(event, MethodsEvent):
            return False

        auth = self.server.socks.auth
        if auth.code not in event.methods:
            logger.info(f"No acceptable auth method from {self.peer}: offered {list(event.methods)}")
            self.stream.sendall(build_method_selection(NO_ACCEPTABLE_METHODS))
            return False

        self.stream.sendall(build_method_selection(auth.code))
        if not auth.server_handshake(self.stream):
            msg = f"Authentication failed for {self.peer}"
            raise AuthenticationFailedError(msg)

        self.parser.authenticated()
        return True

    def _read_request(self) -> Request | None:
        event = self._next_event()
        if not isinstance(event, RequestEvent):
            return None
        host, port = self.client_address[:2]
        return dataclasses.replace(event.request, src_addr=host, src_port=port)

    def handle(self) -> None:
        """Handle an incoming SOCKS5 connection."""
        logger.debug(f"Connection from {self.peer}")
        try:
            if not self._negotiate():
                return

            request = self._read_request()
            if request is None:
                return

            if request.command is not Command.CONNECT:
                msg = f"{request.command.name} from {self.peer} is not supported"
                raise UnsupportedCommandError(msg)

            self.server.socks.handle_request(request, self.stream)

        except SocksError as exc:
            logger.info(f"SOCKS error from {self.peer}: {exc}")
            if self.parser.state in (ServerState.AWAITING_REQUEST, ServerState.RELAYING):
                with contextlib.suppress(OSError):
                    self.stream.sendall(build_reply(exc.reply_code))
        except OSError as exc:
            logger.debug(f"Connection error with {self.peer}: {exc}")
        except Exception:
            logger.exception(f"Error handling SOCKS connection from {self.peer}")

    def finish(self) -> None:
        self.stream.close()
        logger.debug(f"Connection from {self.peer} closed")
