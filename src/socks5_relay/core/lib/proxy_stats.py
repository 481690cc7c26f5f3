"""Statistics tracking for the relay.

Counts control sessions, UDP associations, relayed stream bytes and
datagrams. All operations are thread-safe: stream sessions and datagram
workers each run on their own thread and update the same tracker.

Example:
    from .proxy_stats import proxy_stats

    proxy_stats.connection_started()
    proxy_stats.update_bytes(sent=1024, received=2048)
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime

BANDWIDTH_WINDOW = 5  # Seconds


@dataclass(frozen=True)
class StatsSnapshot:
    """Point-in-time copy of the counters."""

    active_connections: int
    active_associations: int
    total_bytes_sent: int
    total_bytes_received: int
    datagrams_forwarded: int
    datagrams_replied: int
    datagrams_dropped: int


class ProxyStats:
    """Thread-safe statistics tracker for the relay.

    ``sent`` counts bytes moving client -> destination and ``received``
    counts bytes moving destination -> client.
    """

    def __init__(self) -> None:
        self.active_connections = 0
        self.active_associations = 0
        self.total_bytes_sent = 0
        self.total_bytes_received = 0
        self.datagrams_forwarded = 0
        self.datagrams_replied = 0
        self.datagrams_dropped = 0
        self.bandwidth_history: deque[tuple[int, float]] = deque()
        self.start_time = datetime.now(tz=UTC)
        self._lock = threading.Lock()

    def update_bytes(self, sent: int, received: int) -> None:
        """Update byte transfer statistics.

        Args:
            sent: Number of bytes sent
            received: Number of bytes received
        """
        with self._lock:
            self.total_bytes_sent += sent
            self.total_bytes_received += received
            self._record(sent + received)

    def get_bandwidth(self) -> float:
        """Return average bandwidth over the last few seconds in bytes/second."""
        with self._lock:
            self._trim(time.time())
            total_bytes = sum(bytes_ for bytes_, _ in self.bandwidth_history)
            return total_bytes / BANDWIDTH_WINDOW

    def _trim(self, now: float) -> None:
        """Drop samples older than the bandwidth window. Caller holds the lock."""
        cutoff = now - BANDWIDTH_WINDOW
        while self.bandwidth_history and self.bandwidth_history[0][1] <= cutoff:
            self.bandwidth_history.popleft()

    def _record(self, size: int) -> None:
        now = time.time()
        self.bandwidth_history.append((size, now))
        self._trim(now)

    def connection_started(self) -> None:
        with self._lock:
            self.active_connections += 1

    def connection_ended(self) -> None:
        with self._lock:
            self.active_connections -= 1

    def association_started(self) -> None:
        with self._lock:
            self.active_associations += 1

    def association_ended(self) -> None:
        with self._lock:
            self.active_associations -= 1

    def datagram_forwarded(self, size: int) -> None:
        with self._lock:
            self.datagrams_forwarded += 1
            self.total_bytes_sent += size
            self._record(size)

    def datagram_replied(self, size: int) -> None:
        with self._lock:
            self.datagrams_replied += 1
            self.total_bytes_received += size
            self._record(size)

    def datagram_dropped(self) -> None:
        with self._lock:
            self.datagrams_dropped += 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                active_connections=self.active_connections,
                active_associations=self.active_associations,
                total_bytes_sent=self.total_bytes_sent,
                total_bytes_received=self.total_bytes_received,
                datagrams_forwarded=self.datagrams_forwarded,
                datagrams_replied=self.datagrams_replied,
                datagrams_dropped=self.datagrams_dropped,
            )


# Global statistics object
proxy_stats = ProxyStats()
