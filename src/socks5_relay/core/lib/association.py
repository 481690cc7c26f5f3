"""UDP association lifetime tracking.

A UDP ASSOCIATE request leaves its control connection open; that open
connection is the only thing that keeps the association valid. The
``Association`` wraps the connection after the reply has been sent and
exposes a single operation, ``wait_closed``, which blocks until the client
hangs up. Nothing is ever written to the connection again and anything the
client sends on it is discarded.

The ``AssociationRegistry`` records which client hosts currently hold such
a connection, so the shared datagram relay can refuse packets from hosts
without one.
"""

import socket
import threading
from collections import Counter
from collections.abc import Iterator
from contextlib import contextmanager

from loguru import logger

DRAIN_SIZE = 4096


class AssociationRegistry:
    """Thread-safe multiset of client hosts with an open association."""

    def __init__(self) -> None:
        self._hosts: Counter[str] = Counter()
        self._lock = threading.Lock()

    @contextmanager
    def hold(self, host: str) -> Iterator[None]:
        """Mark ``host`` as associated for the duration of the block."""
        with self._lock:
            self._hosts[host] += 1
        try:
            yield
        finally:
            with self._lock:
                self._hosts[host] -= 1
                if self._hosts[host] <= 0:
                    del self._hosts[host]

    def is_active(self, host: str) -> bool:
        with self._lock:
            return self._hosts[host] > 0

    @property
    def active_count(self) -> int:
        with self._lock:
            return sum(self._hosts.values())


class Association:
    """A control connection kept open as the liveness anchor of a UDP association."""

    def __init__(self, control: socket.socket, client_address: tuple) -> None:
        self.control = control
        self.client_address = client_address

    def wait_closed(self) -> None:
        """Block until the client closes the control connection.

        Read errors count as closure. Payload is not expected here and is
        dropped.
        """
        while True:
            try:
                data = self.control.recv(DRAIN_SIZE)
            except OSError as exc:
                logger.debug(f"Association {self.client_address} control read failed: {exc}")
                return
            if not data:
                return
            logger.debug(f"Discarding {len(data)} stray bytes on association {self.client_address}")
