"""Live statistics panel for the relay."""

import threading
import time

import psutil
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.spinner import Spinner
from rich.table import Table
from rich.text import Text

from socks5_relay.core.lib.proxy_stats import ProxyStats, proxy_stats
from socks5_relay.core.utils.utils import format_bytes

console = Console()

BANDWIDTH_THRESHOLD = 100  # bytes


class ProxyUI:
    """UI handler for the relay."""

    def __init__(self, server_ip: str, port: int, stats: ProxyStats = proxy_stats) -> None:
        """Initialize the UI handler.

        Args:
            server_ip: Address the relay listens on
            port: Port shared by the TCP and UDP listeners
            stats: Tracker to render
        """
        self.server_ip = server_ip
        self.port = port
        self.stats = stats
        self.running = True
        self._last_bandwidth = 0.0
        self._start_time = time.monotonic()
        self._refresh_rate = 0.5
        self._spinner = Spinner("dots", text="")
        self._process = psutil.Process()

    def _generate_table(self) -> Table:
        """Generate statistics table."""
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Property", style="cyan", no_wrap=True)
        table.add_column("Value", style="green", no_wrap=True)

        bandwidth = self.stats.get_bandwidth()
        if abs(bandwidth - self._last_bandwidth) > BANDWIDTH_THRESHOLD:
            self._last_bandwidth = bandwidth

        spinner_text = self._spinner.render(time.monotonic() - self._start_time)
        snapshot = self.stats.snapshot()

        table.add_row("Bandwidth", f"{spinner_text} {format_bytes(self._last_bandwidth)}/s")
        table.add_row("Active Connections", str(snapshot.active_connections))
        table.add_row("UDP Associations", str(snapshot.active_associations))
        table.add_row("Client -> Upstream", format_bytes(snapshot.total_bytes_sent))
        table.add_row("Upstream -> Client", format_bytes(snapshot.total_bytes_received))
        table.add_row(
            "Datagrams (fwd/reply/drop)",
            f"{snapshot.datagrams_forwarded}/{snapshot.datagrams_replied}/{snapshot.datagrams_dropped}",
        )
        table.add_row("Memory", format_bytes(self._process.memory_info().rss))
        table.add_row("CPU", f"{self._process.cpu_percent(interval=None):.1f}%")
        return table

    def _generate_display(self) -> Panel:
        """Generate the main display panel."""
        title = Text(f"SOCKS5 Relay: {self.server_ip}:{self.port} (TCP+UDP)", style="bold cyan")
        return Panel(
            self._generate_table(),
            title=title,
            subtitle="Press Ctrl+C to exit",
            border_style="blue",
            padding=(1, 2),
        )

    def run(self) -> None:
        """Run the UI until ``running`` is cleared."""
        console.clear()
        with Live(
            self._generate_display(),
            console=console,
            refresh_per_second=4,
            transient=False,
            auto_refresh=False,
        ) as live:
            while self.running:
                live.update(self._generate_display(), refresh=True)
                time.sleep(self._refresh_rate)


def create_proxy_ui(host: str, port: int) -> threading.Thread:
    """Create and return UI thread."""
    ui = ProxyUI(host, port)
    return threading.Thread(target=ui.run, name="proxy-ui", daemon=True)
