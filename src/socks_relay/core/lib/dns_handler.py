"""DNS resolution using the system resolver with a dnspython fallback."""

import ipaddress
import socket
import threading
from collections.abc import Sequence
from typing import Protocol

import dns.exception
import dns.resolver
from loguru import logger

from socks_relay.core.exceptions import DNSResolutionError

# DNS resolver constants
DEFAULT_TIMEOUT = 1.0  # seconds
DEFAULT_LIFETIME = 3.0  # seconds
RECORD_TYPES = ("A", "AAAA")


class Resolver(Protocol):
    """Anything that turns a hostname into an IP address string."""

    def resolve(self, hostname: str) -> str: ...


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True


class DNSResolver:
    """DNS resolver trying the system resolver first, then dnspython.

    Args:
        nameservers: Nameservers for the dnspython fallback; None uses the
            system configuration
        cache: Keep successful answers for the lifetime of the resolver
    """

    def __init__(self, nameservers: Sequence[str] | None = None, *, cache: bool = True) -> None:
        self.nameservers = list(nameservers) if nameservers else None
        self._cache: dict[str, str] | None = {} if cache else None
        self._lock = threading.Lock()

    def _try_system_dns(self, domain: str) -> str | None:
        """Try resolving using system DNS."""
        try:
            infos = socket.getaddrinfo(domain, None, type=socket.SOCK_STREAM)
        except (socket.gaierror, UnicodeError) as e:
            logger.debug(f"System DNS resolution failed for {domain}: {e}")
            return None
        for family, *_, sockaddr in infos:
            if family in (socket.AF_INET, socket.AF_INET6):
                return str(sockaddr[0])
        return None

    def _make_resolver(self) -> dns.resolver.Resolver:
        if self.nameservers:
            resolver = dns.resolver.Resolver(configure=False)
            resolver.nameservers = self.nameservers
        else:
            resolver = dns.resolver.Resolver()
        resolver.timeout = DEFAULT_TIMEOUT
        resolver.lifetime = DEFAULT_LIFETIME
        return resolver

    def _try_configured_resolver(self, domain: str) -> str | None:
        """Try resolving using dnspython, A records before AAAA."""
        try:
            resolver = self._make_resolver()
        except dns.exception.DNSException as e:
            logger.debug(f"No usable dnspython resolver configuration: {e}")
            return None

        for record_type in RECORD_TYPES:
            try:
                answer = resolver.resolve(domain, record_type)
                return str(answer[0])
            except dns.exception.DNSException as e:
                logger.debug(f"{record_type} lookup via dnspython failed for {domain}: {e}")
        return None

    def resolve(self, hostname: str) -> str:
        """Resolve a hostname to an IP address.

        IP literals are returned unchanged.

        Args:
            hostname: Hostname to resolve

        Returns:
            str: Resolved IP address

        Raises:
            DNSResolutionError: If every method fails
        """
        if is_ip_literal(hostname):
            return hostname

        if self._cache is not None:
            with self._lock:
                cached = self._cache.get(hostname)
            if cached:
                return cached

        ip = self._try_system_dns(hostname) or self._try_configured_resolver(hostname)
        if ip is None:
            msg = f"Could not resolve {hostname} using any available method"
            logger.warning(msg)
            raise DNSResolutionError(msg)

        if self._cache is not None:
            with self._lock:
                self._cache[hostname] = ip
        return ip
