"""Shared UDP relay for SOCKS5 UDP ASSOCIATE.

A single inbound datagram socket serves every client. The receive loop
only reads packets and hands each one to its own worker thread, so a slow
destination never stalls other clients. A worker:

1. Decodes the envelope (short packets, nonzero reserved or fragment
   bytes and unknown address types are dropped silently)
2. Opens an ephemeral socket to the destination and sends the payload
3. Waits a bounded time for one reply datagram
4. Wraps the reply in an envelope carrying the original destination
   address, exactly as the client encoded it, and sends it to the client

Errors never produce a datagram back to the sender; UDP has no channel
for them.

Example:
    relay = DatagramRelay(udp_socket, reply_timeout=5.0)
    threading.Thread(target=relay.serve_forever, daemon=True).start()
"""

import select
import socket
import threading

from loguru import logger

from socks5_relay.core.config import (
    DEFAULT_MAX_INFLIGHT_DATAGRAMS,
    DEFAULT_UDP_REPLY_TIMEOUT,
)
from socks5_relay.core.exceptions import ProxyError

from .address import DatagramEnvelope, TargetAddress
from .association import AssociationRegistry
from .dns_handler import DNSResolver, dns_resolver
from .proxy_stats import ProxyStats, proxy_stats

MAX_DATAGRAM_SIZE = 65535
POLL_INTERVAL = 0.5  # Seconds


class DatagramRelay:
    """Forward encapsulated datagrams from clients to their destinations.

    The inbound socket is injected already bound; the relay never rebinds
    or reconfigures it. Workers only ever call ``sendto`` on it, which is
    safe to do concurrently.
    """

    def __init__(
        self,
        sock: socket.socket,
        associations: AssociationRegistry | None = None,
        reply_timeout: float = DEFAULT_UDP_REPLY_TIMEOUT,
        max_inflight: int | None = DEFAULT_MAX_INFLIGHT_DATAGRAMS,
        resolver: DNSResolver = dns_resolver,
        stats: ProxyStats = proxy_stats,
    ) -> None:
        """Initialize the relay.

        Args:
            sock: Bound datagram socket shared by all clients
            associations: When given, only hosts holding an association are served
            reply_timeout: Seconds to wait for a destination's reply
            max_inflight: Concurrent worker limit, ``None`` or 0 for unbounded
            resolver: Resolver for domain-name destinations
            stats: Tracker receiving datagram counts
        """
        self.socket = sock
        self.associations = associations
        self.reply_timeout = reply_timeout
        self.resolver = resolver
        self.stats = stats
        self._slots = threading.BoundedSemaphore(max_inflight) if max_inflight else None
        self._shutdown_request = threading.Event()
        self._stopped = threading.Event()
        self._stopped.set()

    @property
    def port(self) -> int:
        """Local port of the shared socket, advertised in UDP ASSOCIATE replies."""
        return self.socket.getsockname()[1]

    def serve_forever(self, poll_interval: float = POLL_INTERVAL) -> None:
        """Read packets and dispatch each to a worker until ``shutdown`` is called."""
        self._shutdown_request.clear()
        self._stopped.clear()
        logger.info(f"UDP relay listening on port {self.port}")
        try:
            while not self._shutdown_request.is_set():
                try:
                    r, _, _ = select.select([self.socket], [], [], poll_interval)
                    if not r:
                        continue
                    data, client_address = self.socket.recvfrom(MAX_DATAGRAM_SIZE)
                except (OSError, ValueError) as exc:
                    if self._shutdown_request.is_set() or self.socket.fileno() == -1:
                        break
                    logger.warning(f"UDP read error: {exc}")
                    continue
                self.dispatch(data, client_address)
        finally:
            self._stopped.set()

    def shutdown(self) -> None:
        """Stop the receive loop and wait for it to exit."""
        self._shutdown_request.set()
        self._stopped.wait()

    def dispatch(self, data: bytes, client_address: tuple) -> None:
        """Hand one inbound packet to a worker thread without blocking."""
        if self.associations is not None and not self.associations.is_active(client_address[0]):
            logger.debug(f"Dropping datagram from {client_address}: no active association")
            self.stats.datagram_dropped()
            return

        if self._slots is not None and not self._slots.acquire(blocking=False):
            logger.debug(f"Dropping datagram from {client_address}: too many in flight")
            self.stats.datagram_dropped()
            return

        worker = threading.Thread(
            target=self._worker,
            args=(data, client_address),
            name=f"udp-relay-{client_address[0]}:{client_address[1]}",
            daemon=True,
        )
        try:
            worker.start()
        except RuntimeError as exc:
            # Thread limit reached: drop this packet, keep the receive loop alive
            if self._slots is not None:
                self._slots.release()
            logger.warning(f"Dropping datagram from {client_address}: cannot start worker: {exc}")
            self.stats.datagram_dropped()

    def _worker(self, data: bytes, client_address: tuple) -> None:
        try:
            self.handle_packet(data, client_address)
        finally:
            if self._slots is not None:
                self._slots.release()

    def handle_packet(self, data: bytes, client_address: tuple) -> bool:
        """Relay one packet and its reply, if any.

        Returns:
            bool: True if a reply datagram was sent back to the client
        """
        try:
            envelope = DatagramEnvelope.decode(data)
            destination = self._resolve(envelope.target)
        except ProxyError as exc:
            logger.debug(f"Dropping datagram from {client_address}: {exc}")
            self.stats.datagram_dropped()
            return False

        reply = self._exchange(envelope, destination, client_address)
        if reply is None:
            return False

        packet = DatagramEnvelope(envelope.target, reply).encode()
        try:
            self.socket.sendto(packet, client_address)
        except OSError as exc:
            logger.warning(f"Failed to send reply to client {client_address}: {exc}")
            return False

        self.stats.datagram_replied(len(reply))
        logger.debug(f"UDP reply: {client_address} <- {envelope.target} ({len(reply)} bytes)")
        return True

    def _resolve(self, target: TargetAddress) -> tuple[str, int]:
        host = self.resolver.resolve(target.host) if target.is_domain else target.host
        return host, target.port

    def _exchange(
        self, envelope: DatagramEnvelope, destination: tuple[str, int], client_address: tuple
    ) -> bytes | None:
        """Send the payload from an ephemeral socket and wait for one reply."""
        family = socket.AF_INET6 if ":" in destination[0] else socket.AF_INET
        try:
            upstream = socket.socket(family, socket.SOCK_DGRAM)
        except OSError as exc:
            logger.warning(f"Could not open upstream socket for {envelope.target}: {exc}")
            self.stats.datagram_dropped()
            return None

        with upstream:
            try:
                upstream.connect(destination)
                upstream.send(envelope.payload)
            except OSError as exc:
                logger.debug(f"Failed to send to target {envelope.target}: {exc}")
                self.stats.datagram_dropped()
                return None

            self.stats.datagram_forwarded(len(envelope.payload))
            logger.debug(
                f"UDP relay: {client_address} -> {envelope.target} ({len(envelope.payload)} bytes)"
            )

            upstream.settimeout(self.reply_timeout)
            try:
                return upstream.recv(MAX_DATAGRAM_SIZE)
            except OSError:
                # Timeout or ICMP error: no reply, which is normal for UDP
                return None
