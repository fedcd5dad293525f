"""Custom exceptions for the SOCKS5 server and client.

This module defines the exceptions used throughout the proxy implementation.
Every protocol-level failure has its own class so that callers can handle
each outcome explicitly:
- Framing errors raised by the handshake parsers
- Authentication failures
- Destination policy violations (blacklist)
- DNS resolution and outbound connect failures

Each ``SocksError`` carries the SOCKS5 reply code the server writes back to
the client when the stream is still writable.

Example:
    try:
        tunnel = client.connect("example.com", 443)
    except ConnectReplyError as e:
        console.print(f"[red]Proxy refused the connection: {e.reply_code.name}")
"""

from socks_relay.core.protocol.constants import REPLY_MESSAGES, ReplyCode


class ProxyError(Exception):
    """Base exception for proxy errors."""


class ConfigError(ProxyError):
    """Raised when a configuration value is invalid."""


class SocksError(ProxyError):
    """Base exception for SOCKS5 protocol failures."""

    reply_code: ReplyCode = ReplyCode.GENERAL_FAILURE

    def __init__(self, message: str = "", reply_code: ReplyCode | None = None) -> None:
        if reply_code is not None:
            self.reply_code = reply_code
        super().__init__(message or REPLY_MESSAGES[self.reply_code])


class ProtocolVersionMismatchError(SocksError):
    """Raised when a frame does not start with the expected version byte."""


class EmptyMethodListError(SocksError):
    """Raised when a greeting advertises zero authentication methods."""


class UnsupportedCommandError(SocksError):
    """Raised for a request command the server does not handle."""

    reply_code = ReplyCode.COMMAND_NOT_SUPPORTED


class UnsupportedAddressTypeError(SocksError):
    """Raised for an ATYP byte outside IPv4, domain name and IPv6."""

    reply_code = ReplyCode.ADDRESS_TYPE_NOT_SUPPORTED


class TruncatedInputError(SocksError):
    """Raised when fewer bytes are available than a field requires."""


class MalformedCredentialsError(SocksError):
    """Raised for a username/password frame with a bad version or empty field."""


class AuthMethodMismatchError(SocksError):
    """Raised when the server selects a method the client did not offer."""


class AuthProtocolMismatchError(SocksError):
    """Raised when a username/password reply has the wrong version byte."""


class AuthenticationFailedError(SocksError):
    """Raised when credentials are rejected."""


class DestinationBlacklistedError(SocksError):
    """Raised when the destination address falls inside a blacklisted range."""

    reply_code = ReplyCode.NOT_ALLOWED


class DNSResolutionError(SocksError):
    """Raised when DNS resolution fails."""

    reply_code = ReplyCode.HOST_UNREACHABLE


class OutboundConnectError(SocksError):
    """Raised when the outbound connection to the destination cannot be opened."""


class ConnectReplyError(SocksError):
    """Raised on the client when the proxy answers a request with a failure reply."""
