"""Statistics tracking for the SOCKS proxy server.

This module provides real-time statistics for a server instance:
- Active and total connection counts
- Connections rejected by the connection ceiling
- Bytes relayed towards the destination (upstream) and back (downstream)
- Bandwidth over a short sliding window

All counters are updated under a lock because every session runs in its
own thread.

Example:
    stats = ProxyStats()
    stats.connection_started()
    stats.update_bytes(upstream=1024, downstream=2048)
"""

import threading
import time
from collections import deque
from datetime import UTC, datetime

BANDWIDTH_WINDOW = 5  # seconds


class ProxyStats:
    """Thread-safe statistics tracker for a SOCKS proxy server."""

    def __init__(self) -> None:
        self.active_connections = 0
        self.total_connections = 0
        self.rejected_connections = 0
        self.active_sessions = 0
        self.total_bytes_upstream = 0
        self.total_bytes_downstream = 0
        self.bandwidth_history: deque[tuple[int, float]] = deque(maxlen=1024)
        self.start_time = datetime.now(tz=UTC)
        self._lock = threading.Lock()

    def update_bytes(self, upstream: int = 0, downstream: int = 0) -> None:
        """Record relayed bytes.

        Args:
            upstream: Bytes written from the client towards the destination
            downstream: Bytes written from the destination back to the client
        """
        with self._lock:
            self.total_bytes_upstream += upstream
            self.total_bytes_downstream += downstream
            self.bandwidth_history.append((upstream + downstream, time.monotonic()))

    def get_bandwidth(self) -> float:
        """Average bandwidth over the last few seconds in bytes/second."""
        with self._lock:
            cutoff = time.monotonic() - BANDWIDTH_WINDOW
            total = sum(size for size, ts in self.bandwidth_history if ts > cutoff)
        return total / BANDWIDTH_WINDOW

    @property
    def total_bytes(self) -> int:
        return self.total_bytes_upstream + self.total_bytes_downstream

    def connection_started(self) -> None:
        with self._lock:
            self.active_connections += 1
            self.total_connections += 1

    def connection_ended(self) -> None:
        with self._lock:
            self.active_connections -= 1

    def connection_rejected(self) -> None:
        with self._lock:
            self.rejected_connections += 1

    def session_started(self) -> None:
        with self._lock:
            self.active_sessions += 1

    def session_ended(self) -> None:
        with self._lock:
            self.active_sessions -= 1
