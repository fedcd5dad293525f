"""Formatting helpers for console output."""

import ipaddress
from typing import Final

BYTES_PER_KB: Final = 1024
SIZE_UNITS: Final = ("B", "KB", "MB", "GB", "TB")


def format_bytes(bytes_: float) -> str:
    """Format a byte count with a binary unit, e.g. ``2.0 KB``."""
    value = float(bytes_)
    for unit in SIZE_UNITS[:-1]:
        if value < BYTES_PER_KB:
            return f"{value:.1f} {unit}"
        value /= BYTES_PER_KB
    return f"{value:.1f} {SIZE_UNITS[-1]}"


def format_duration(seconds: float) -> str:
    """Format an elapsed time as ``1h 02m 03s``, dropping leading zero units."""
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes:02d}m {secs:02d}s"
    if minutes:
        return f"{minutes}m {secs:02d}s"
    return f"{secs}s"


def format_address(host: str, port: int) -> str:
    """Join host and port, bracketing IPv6 literals."""
    try:
        is_v6 = ipaddress.ip_address(host).version == 6
    except ValueError:
        is_v6 = False
    return f"[{host}]:{port}" if is_v6 else f"{host}:{port}"
