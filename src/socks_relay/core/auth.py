"""Authentication capabilities for SOCKS5 method sub-negotiation.

An auth method is a value injected into the server or client at construction
time. It knows its method code and implements both protocol roles:
- ``server_handshake``: verify the client after the method was selected
- ``client_handshake``: answer the server after the method was selected

Both roles run on a ``SocketStream``; they read exactly the bytes of their
sub-negotiation so that anything the peer pipelined after it stays buffered
for the next stage.

Example:
    server_auth = UserPassAuth(verifier=lambda user, pw: user == "alice")
    client_auth = UserPassAuth(credentials=Credentials("alice", "wonderland"))
"""

import hmac
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import ClassVar

from loguru import logger

from socks_relay.core.config import Credentials
from socks_relay.core.exceptions import AuthProtocolMismatchError, MalformedCredentialsError
from socks_relay.core.protocol.constants import USERPASS_VERSION, AuthMethodCode
from socks_relay.core.protocol.messages import build_credentials, build_credentials_reply
from socks_relay.core.stream import SocketStream

Verifier = Callable[[str, str], bool]


class AuthMethod(ABC):
    """Base class for negotiable authentication methods."""

    code: ClassVar[int]

    @abstractmethod
    def server_handshake(self, stream: SocketStream) -> bool:
        """Authenticate the client, returning True if it is accepted."""

    @abstractmethod
    def client_handshake(self, stream: SocketStream) -> bool:
        """Authenticate against the server, returning True if accepted."""


class NoAuth(AuthMethod):
    """Method 0x00: no sub-negotiation, always succeeds."""

    code = AuthMethodCode.NO_AUTH

    def server_handshake(self, stream: SocketStream) -> bool:
        return True

    def client_handshake(self, stream: SocketStream) -> bool:
        return True


class UserPassAuth(AuthMethod):
    """Method 0x02: username/password authentication (RFC 1929).

    Args:
        credentials: Credentials the client role sends
        verifier: Callable ``(username, password) -> bool`` used by the server role
    """

    code = AuthMethodCode.USERNAME_PASSWORD

    def __init__(
        self, credentials: Credentials | None = None, verifier: Verifier | None = None
    ) -> None:
        self.credentials = credentials
        self.verifier = verifier

    def server_handshake(self, stream: SocketStream) -> bool:
        """Read the credentials frame, run the verifier and write the status.

        Raises:
            MalformedCredentialsError: On a bad version byte or an empty field
            TruncatedInputError: If the client closes mid-frame
        """
        if self.verifier is None:
            msg = "UserPassAuth needs a verifier for the server role"
            raise RuntimeError(msg)

        version, ulen = stream.read_exactly(2)
        if version != USERPASS_VERSION:
            msg = f"Unsupported auth request version: {version}"
            raise MalformedCredentialsError(msg)
        if ulen == 0:
            msg = "Bad username length (0)"
            raise MalformedCredentialsError(msg)
        username = stream.read_exactly(ulen).decode("utf-8", errors="replace")

        (plen,) = stream.read_exactly(1)
        if plen == 0:
            msg = "Bad password length (0)"
            raise MalformedCredentialsError(msg)
        password = stream.read_exactly(plen).decode("utf-8", errors="replace")

        accepted = bool(self.verifier(username, password))
        stream.sendall(build_credentials_reply(accepted))
        if not accepted:
            logger.info(f"Rejected credentials for user {username!r}")
        return accepted

    def client_handshake(self, stream: SocketStream) -> bool:
        """Send the configured credentials and read the 2-byte status.

        Raises:
            AuthProtocolMismatchError: If the reply version byte is not 0x01
        """
        if self.credentials is None:
            msg = "UserPassAuth needs credentials for the client role"
            raise RuntimeError(msg)

        stream.sendall(build_credentials(self.credentials.username, self.credentials.password))
        version, status = stream.read_exactly(2)
        if version != USERPASS_VERSION:
            msg = f"Unsupported auth reply version: {version}"
            raise AuthProtocolMismatchError(msg)
        return status == 0x00


def static_verifier(credentials: Credentials) -> Verifier:
    """Build a verifier accepting exactly one username/password pair."""

    def verify(username: str, password: str) -> bool:
        user_ok = hmac.compare_digest(username.encode(), credentials.username.encode())
        pass_ok = hmac.compare_digest(password.encode(), credentials.password.encode())
        return user_ok and pass_ok

    return verify


def server_auth(credentials: Credentials | None, verifier: Verifier | None = None) -> AuthMethod:
    """Select the server's auth method from configuration.

    An explicit verifier wins over static credentials; with neither, no
    authentication is required.
    """
    if verifier is not None:
        return UserPassAuth(verifier=verifier)
    if credentials is not None:
        return UserPassAuth(verifier=static_verifier(credentials))
    return NoAuth()


def client_auth(credentials: Credentials | None) -> AuthMethod:
    """Select the client's auth method from configuration."""
    if credentials is not None:
        return UserPassAuth(credentials=credentials)
    return NoAuth()
