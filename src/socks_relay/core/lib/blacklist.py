"""Destination blacklist.

The blacklist is an ordered, immutable set of CIDR ranges. A destination
address is refused when it falls inside any of them. Private and link-local
ranges are included by default so the proxy cannot be used to reach the
network it runs in.
"""

import ipaddress
from collections.abc import Iterable
from typing import Final

from socks_relay.core.exceptions import ConfigError

Network = ipaddress.IPv4Network | ipaddress.IPv6Network

DEFAULT_BLACKLIST: Final = (
    "10.0.0.0/8",  # IPv4 private ranges
    "172.16.0.0/12",
    "192.168.0.0/16",
    "169.254.0.0/16",  # IPv4 link-local
    "fc00::/7",  # IPv6 unique local
    "fe80::/10",  # IPv6 link-local
)


class Blacklist:
    """Immutable set of blocked CIDR ranges."""

    def __init__(self, ranges: Iterable[str] = (), *, include_defaults: bool = True) -> None:
        networks: list[Network] = []
        sources = [*ranges, *(DEFAULT_BLACKLIST if include_defaults else ())]
        for cidr in sources:
            try:
                network = ipaddress.ip_network(cidr, strict=False)
            except ValueError as e:
                msg = f"Invalid blacklist range {cidr!r}: {e}"
                raise ConfigError(msg) from e
            if network not in networks:
                networks.append(network)
        self._networks: tuple[Network, ...] = tuple(networks)

    @property
    def networks(self) -> tuple[Network, ...]:
        return self._networks

    def __len__(self) -> int:
        return len(self._networks)

    def __contains__(self, address: object) -> bool:
        if not isinstance(address, str):
            return False
        return self.match(address) is not None

    def match(self, address: str) -> Network | None:
        """Return the first range containing ``address``, or None.

        Non-literal addresses never match. IPv4-mapped IPv6 addresses are
        checked against the IPv4 ranges as well.
        """
        try:
            ip = ipaddress.ip_address(address.split("%", 1)[0])
        except ValueError:
            return None

        candidates = [ip]
        if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
            candidates.append(ip.ipv4_mapped)

        for network in self._networks:
            for candidate in candidates:
                if candidate.version == network.version and candidate in network:
                    return network
        return None
