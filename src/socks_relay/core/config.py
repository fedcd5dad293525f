"""Server and client configuration.

Configuration values are plain dataclasses. They can be built directly, from
a mapping using either camelCase option names (``listenPort``,
``connectionLimit``, ``dnsLocal``...) or snake_case,
or from a TOML file with ``[server]`` and ``[client]`` tables.

Example:
    data = load_config(Path("socks-relay.toml"))
    config = ServerConfig.from_mapping(data.get("server", {}))
"""

import dataclasses
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Self

from socks_relay.core.exceptions import ConfigError

DEFAULT_PORT = 1080
DEFAULT_HOST = "127.0.0.1"
DEFAULT_CONNECT_TIMEOUT = 10.0  # seconds
DEFAULT_DECISION_TIMEOUT = 30.0  # seconds


@dataclass(frozen=True)
class Credentials:
    """Username/password pair."""

    username: str
    password: str = field(repr=False)

    def __post_init__(self) -> None:
        for name in ("username", "password"):
            size = len(getattr(self, name).encode("utf-8"))
            if not 1 <= size <= 255:
                msg = f"The {name} must be 1-255 bytes, got {size}"
                raise ConfigError(msg)

    @classmethod
    def from_option(cls, value: Any) -> Self | None:
        """Parse an ``auth`` option: false/None disables auth, a mapping enables it."""
        if value is None or value is False:
            return None
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            try:
                return cls(str(value["username"]), str(value["password"]))
            except KeyError as e:
                msg = f"auth option is missing {e.args[0]!r}"
                raise ConfigError(msg) from None
        msg = f"auth must be false or a mapping with username and password, got {value!r}"
        raise ConfigError(msg)


def _normalize(mapping: Mapping[str, Any], aliases: Mapping[str, str]) -> dict[str, Any]:
    options: dict[str, Any] = {}
    for key, value in mapping.items():
        name = aliases.get(key, key)
        if name in options:
            msg = f"Option {key!r} given twice"
            raise ConfigError(msg)
        options[name] = value
    return options


def _build(cls: type, options: dict[str, Any]) -> Any:
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(options) - known)
    if unknown:
        msg = f"Unknown {cls.__name__} option(s): {', '.join(unknown)}"
        raise ConfigError(msg)
    try:
        return cls(**options)
    except (TypeError, ValueError) as e:
        raise ConfigError(str(e)) from e


@dataclass(frozen=True)
class ServerConfig:
    """Server options.

    Attributes:
        listen_host: Address to bind to
        listen_port: Port to listen on
        connection_limit: Maximum simultaneous inbound connections (None = unlimited)
        blacklist: Extra CIDR ranges destinations must not fall into
        blacklist_defaults: Merge the default private/link-local ranges
        auth: Credentials required from clients (None = no authentication)
        connect_timeout: Seconds allowed for the outbound connect
        decision_timeout: Seconds the embedding policy has to accept or deny
        idle_timeout: Seconds a relay may stay idle (None = forever)
    """

    listen_host: str = DEFAULT_HOST
    listen_port: int = DEFAULT_PORT
    connection_limit: int | None = None
    blacklist: tuple[str, ...] = ()
    blacklist_defaults: bool = True
    auth: Credentials | None = None
    connect_timeout: float | None = DEFAULT_CONNECT_TIMEOUT
    decision_timeout: float | None = DEFAULT_DECISION_TIMEOUT
    idle_timeout: float | None = None

    _ALIASES = {
        "listenHost": "listen_host",
        "listenPort": "listen_port",
        "connectionLimit": "connection_limit",
        "blacklistDefaults": "blacklist_defaults",
        "connectTimeout": "connect_timeout",
        "decisionTimeout": "decision_timeout",
        "idleTimeout": "idle_timeout",
    }

    def __post_init__(self) -> None:
        if not 0 <= self.listen_port <= 0xFFFF:
            msg = f"listen_port out of range: {self.listen_port}"
            raise ConfigError(msg)
        if self.connection_limit is not None and self.connection_limit < 0:
            msg = f"connection_limit must be >= 0, got {self.connection_limit}"
            raise ConfigError(msg)
        object.__setattr__(self, "blacklist", tuple(self.blacklist))
        object.__setattr__(self, "auth", Credentials.from_option(self.auth))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> Self:
        return _build(cls, _normalize(mapping, cls._ALIASES))

    def merge(self, **overrides: Any) -> Self:
        """Return a copy with every override that is not None applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class ClientConfig:
    """Client options.

    Attributes:
        proxy_host: SOCKS5 server address
        proxy_port: SOCKS5 server port
        auth: Credentials sent to the server (None = no authentication)
        dns_local: Resolve destination names locally before sending the request
        dns_strict: With dns_local, fail instead of falling back to the name
        timeout: Socket timeout for the proxy connection and handshake
    """

    proxy_host: str = DEFAULT_HOST
    proxy_port: int = DEFAULT_PORT
    auth: Credentials | None = None
    dns_local: bool = False
    dns_strict: bool = False
    timeout: float | None = None

    _ALIASES = {
        "proxyHost": "proxy_host",
        "proxyPort": "proxy_port",
        "dnsLocal": "dns_local",
        "dnsStrict": "dns_strict",
    }

    def __post_init__(self) -> None:
        if not 0 < self.proxy_port <= 0xFFFF:
            msg = f"proxy_port out of range: {self.proxy_port}"
            raise ConfigError(msg)
        object.__setattr__(self, "auth", Credentials.from_option(self.auth))

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> Self:
        return _build(cls, _normalize(mapping, cls._ALIASES))

    def merge(self, **overrides: Any) -> Self:
        changes = {key: value for key, value in overrides.items() if value is not None}
        return dataclasses.replace(self, **changes)


def load_config(path: Path) -> dict[str, Any]:
    """Load a TOML configuration file.

    Args:
        path: File to read

    Returns:
        dict[str, Any]: Parsed document, normally with ``server``/``client`` tables

    Raises:
        ConfigError: If the file is missing or not valid TOML
    """
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except FileNotFoundError:
        msg = f"Config file not found: {path}"
        raise ConfigError(msg) from None
    except tomllib.TOMLDecodeError as e:
        msg = f"Invalid config file {path}: {e}"
        raise ConfigError(msg) from e
