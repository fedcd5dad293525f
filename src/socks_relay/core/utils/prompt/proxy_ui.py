"""Live statistics panel for a running server."""

import threading
import time
from datetime import UTC, datetime

from rich.panel import Panel
from rich.spinner import Spinner
from rich.table import Table
from rich.text import Text

from socks_relay.core.lib.proxy_stats import ProxyStats
from socks_relay.core.utils.utils import format_address, format_bytes, format_duration

from .prompt import PromptHandler

BANDWIDTH_THRESHOLD = 100  # bytes/s


class ProxyUI(PromptHandler):
    """Panel showing connection, session and traffic counters of one server.

    Args:
        stats: Statistics of the server to display
        server_ip: Address the server listens on
        port: Port the server listens on
    """

    def __init__(self, stats: ProxyStats, server_ip: str, port: int) -> None:
        super().__init__(refresh_rate=0.5)
        self.stats = stats
        self.address = format_address(server_ip, port)
        self.running = True
        self._last_bandwidth = 0.0
        self._spinner = Spinner("dots")

    def _generate_table(self) -> Table:
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Property", style="cyan", no_wrap=True)
        table.add_column("Value", style="green", no_wrap=True)

        bandwidth = self.stats.get_bandwidth()
        # Skip tiny changes to avoid jitter
        if abs(bandwidth - self._last_bandwidth) > BANDWIDTH_THRESHOLD:
            self._last_bandwidth = bandwidth
        uptime = (datetime.now(tz=UTC) - self.stats.start_time).total_seconds()

        table.add_row("Uptime", format_duration(uptime))
        table.add_row("Bandwidth", f"{format_bytes(self._last_bandwidth)}/s")
        table.add_row(
            "Connections",
            f"{self.stats.active_connections} active, {self.stats.total_connections} total",
        )
        table.add_row("Rejected (limit)", str(self.stats.rejected_connections))
        table.add_row("Sessions", str(self.stats.active_sessions))
        table.add_row("Upstream", format_bytes(self.stats.total_bytes_upstream))
        table.add_row("Downstream", format_bytes(self.stats.total_bytes_downstream))
        return table

    def _generate_display(self) -> Panel:
        title = Text.assemble(
            (self._spinner.render(time.monotonic()).plain + " ", "cyan"),
            (f"SOCKS5 proxy on {self.address}", "bold cyan"),
        )
        return Panel(
            self._generate_table(),
            title=title,
            subtitle="Press Ctrl+C to exit",
            border_style="blue",
            padding=(1, 2),
        )

    def run(self) -> None:
        """Redraw the panel until ``stop`` is called."""
        with self.create_live_display(self._generate_display()) as live:
            while self.running:
                live.update(self._generate_display())
                time.sleep(self.refresh_rate)

    def stop(self) -> None:
        self.running = False


def create_proxy_ui(stats: ProxyStats, host: str, port: int) -> tuple[ProxyUI, threading.Thread]:
    """Create the panel and the daemon thread that runs it."""
    ui = ProxyUI(stats, host, port)
    return ui, threading.Thread(target=ui.run, name="socks-relay-ui", daemon=True)
