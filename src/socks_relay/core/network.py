"""Network interface discovery.

Used by the command line to show which local addresses the server can bind
to. Each interface is reported with its IPv4/IPv6 addresses and whether it
is up and whether it is a loopback interface.

Example:
    for iface in list_interfaces():
        print(iface.name, iface.addresses)
"""

import socket
from dataclasses import dataclass, field

import psutil

LOOPBACK_PREFIXES = ("lo",)


@dataclass
class NetworkInterface:
    """Network interface representation with its key properties.

    Attributes:
        name: Interface name (e.g., 'en0', 'eth0')
        addresses: IPv4 and IPv6 addresses assigned to the interface
        is_up: Boolean indicating if the interface is up and running
        is_loopback: Boolean indicating if this is a loopback interface
    """

    name: str
    addresses: list[str] = field(default_factory=list)
    is_up: bool = False
    is_loopback: bool = False


def list_interfaces(*, include_down: bool = False) -> list[NetworkInterface]:
    """Return interfaces that have at least one IP address, up interfaces first."""
    stats = psutil.net_if_stats()
    interfaces = []
    for name, addrs in psutil.net_if_addrs().items():
        addresses = [
            addr.address.split("%", 1)[0]
            for addr in addrs
            if addr.family in (socket.AF_INET, socket.AF_INET6)
        ]
        if not addresses:
            continue

        iface_stats = stats.get(name)
        is_up = bool(iface_stats and iface_stats.isup)
        if not is_up and not include_down:
            continue

        is_loopback = name.startswith(LOOPBACK_PREFIXES) or all(
            a.startswith("127.") or a == "::1" for a in addresses
        )
        interfaces.append(
            NetworkInterface(name=name, addresses=addresses, is_up=is_up, is_loopback=is_loopback)
        )

    interfaces.sort(key=lambda iface: (not iface.is_up, iface.is_loopback, iface.name))
    return interfaces
