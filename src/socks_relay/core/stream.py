"""Buffered duplex stream over a connected socket.

``SocketStream`` adds a push-back buffer to a plain socket. Handshake stages
read exactly what their frame needs; bytes that arrived with a frame but
belong to the next stage are pushed back with ``unread`` and returned by the
next read, so pipelined clients are handled correctly.
"""

import contextlib
import socket

from socks_relay.core.exceptions import TruncatedInputError

BUFFER_SIZE = 4096


class SocketStream:
    """Socket wrapper with a push-back buffer."""

    def __init__(self, sock: socket.socket) -> None:
        self.sock = sock
        self._pending = bytearray()
        self.closed = False

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    def recv(self, size: int = BUFFER_SIZE) -> bytes:
        """Return pushed-back bytes if any, otherwise read from the socket."""
        if self._pending:
            data = bytes(self._pending[:size])
            del self._pending[:size]
            return data
        return self.sock.recv(size)

    def read_exactly(self, size: int) -> bytes:
        """Read exactly ``size`` bytes.

        Raises:
            TruncatedInputError: If the peer closes before enough bytes arrive
        """
        data = bytearray()
        while len(data) < size:
            chunk = self.recv(size - len(data))
            if not chunk:
                msg = f"Connection closed after {len(data)} of {size} bytes"
                raise TruncatedInputError(msg)
            data += chunk
        return bytes(data)

    def unread(self, data: bytes) -> None:
        """Push bytes back so the next read returns them first."""
        if data:
            self._pending[:0] = data

    def sendall(self, data: bytes) -> None:
        self.sock.sendall(data)

    def fileno(self) -> int:
        return self.sock.fileno()

    def shutdown(self) -> None:
        """Shut down both directions, waking any thread blocked on the socket."""
        with contextlib.suppress(OSError):
            self.sock.shutdown(socket.SHUT_RDWR)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.shutdown()
        with contextlib.suppress(OSError):
            self.sock.close()
