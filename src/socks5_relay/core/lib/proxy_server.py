"""SOCKS5 relay server.

This module wires the two listeners together:
- A threading TCP server, one thread per control connection
- A UDP socket bound to the same numeric port, served by ``DatagramRelay``
  on its own thread

Both listeners share one ``AssociationRegistry`` so datagrams are only
relayed for hosts that keep a UDP ASSOCIATE control connection open
(unless enforcement is turned off).

Example:
    # Serve on all interfaces, port 1080, until Ctrl+C
    create_proxy_server(ProxyConfig(port=1080))
"""

import contextlib
import socket
import socketserver
import threading

from loguru import logger
from rich.console import Console

from socks5_relay.core.config import ProxyConfig

from .association import AssociationRegistry
from .datagram_relay import DatagramRelay
from .dns_handler import DNSResolver, dns_resolver
from .proxy_stats import ProxyStats, proxy_stats
from .socks_handler import SocksHandler

console = Console()

SHUTDOWN_JOIN_TIMEOUT = 1.0  # Seconds


def address_family_for(host: str) -> socket.AddressFamily:
    """Pick the socket family for a listening host literal."""
    return socket.AF_INET6 if ":" in host else socket.AF_INET


class SocksProxy(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """SOCKS5 server owning the TCP listener and the shared datagram relay."""

    allow_reuse_address = True
    daemon_threads = True
    request_queue_size = 100

    def __init__(
        self,
        server_address: tuple[str, int],
        handler_class: type[socketserver.BaseRequestHandler],
        config: ProxyConfig,
        datagram_relay: DatagramRelay,
        associations: AssociationRegistry,
        resolver: DNSResolver = dns_resolver,
        stats: ProxyStats = proxy_stats,
    ) -> None:
        self.address_family = address_family_for(server_address[0])
        self.config = config
        self.datagram_relay = datagram_relay
        self.associations = associations
        self.resolver = resolver
        self.stats = stats
        self._relay_thread: threading.Thread | None = None
        super().__init__(server_address, handler_class)

    def serve_forever(self, poll_interval: float = 0.5) -> None:
        """Run the datagram relay thread, then accept control connections."""
        self._relay_thread = threading.Thread(
            target=self.datagram_relay.serve_forever, name="udp-relay", daemon=True
        )
        self._relay_thread.start()
        logger.info(f"SOCKS5 relay listening on {self.server_address[0]}:{self.server_address[1]} (TCP and UDP)")
        super().serve_forever(poll_interval)

    def shutdown(self) -> None:
        """Stop both the accept loop and the datagram relay."""
        super().shutdown()
        if self._relay_thread is not None:
            self.datagram_relay.shutdown()
            self._relay_thread.join(timeout=SHUTDOWN_JOIN_TIMEOUT)
            self._relay_thread = None

    def server_close(self) -> None:
        """Close the TCP listener and the shared UDP socket."""
        super().server_close()
        self.datagram_relay.socket.close()


def build_server(
    config: ProxyConfig,
    resolver: DNSResolver = dns_resolver,
    stats: ProxyStats = proxy_stats,
) -> SocksProxy:
    """Bind both listeners for ``config``.

    The TCP listener is bound first so that ``port=0`` resolves to one
    ephemeral port, which the UDP socket then binds as well.

    Raises:
        OSError: If either listener cannot be bound
    """
    config.validate()
    associations = AssociationRegistry()

    udp_socket = socket.socket(address_family_for(config.host), socket.SOCK_DGRAM)
    relay = DatagramRelay(
        udp_socket,
        associations=associations if config.enforce_association else None,
        reply_timeout=config.udp_reply_timeout,
        max_inflight=config.max_inflight_datagrams,
        resolver=resolver,
        stats=stats,
    )

    try:
        server = SocksProxy(
            (config.host, config.port),
            SocksHandler,
            config,
            relay,
            associations,
            resolver=resolver,
            stats=stats,
        )
    except OSError:
        udp_socket.close()
        raise

    try:
        udp_socket.bind((config.host, server.server_address[1]))
    except OSError:
        server.server_close()
        raise
    return server


def create_proxy_server(config: ProxyConfig) -> None:
    """Create the relay and serve until interrupted.

    Args:
        config: Relay settings

    Raises:
        OSError: If a listener cannot be bound
    """
    server = build_server(config)
    try:
        if config.show_ui:
            # Imported here: the UI module depends on this package
            from socks5_relay.core.utils.prompt.proxy_ui import create_proxy_ui

            ui_thread = create_proxy_ui(config.host, server.server_address[1])
            ui_thread.start()
        else:
            console.print(
                f"[bold green]SOCKS5 relay listening on {config.host}:{server.server_address[1]} (TCP and UDP)"
            )
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
        console.print("\n[yellow]Shutting down relay...")
    finally:
        with contextlib.suppress(OSError):
            server.server_close()
        logger.info("Server closed")
