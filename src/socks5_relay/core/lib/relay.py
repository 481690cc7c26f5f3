"""Bidirectional byte relay for CONNECT sessions."""

import select
import socket

from loguru import logger

from socks5_relay.core.config import DEFAULT_BUFFER_SIZE

from .proxy_stats import ProxyStats, proxy_stats


def forward(
    local: socket.socket,
    remote: socket.socket,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    idle_timeout: float | None = None,
    stats: ProxyStats = proxy_stats,
) -> None:
    """Forward data between local and remote sockets.

    Returns as soon as either direction reaches EOF or fails, without
    draining the other direction. Closing both sockets is the caller's job.

    Args:
        local: Client-facing control connection
        remote: Destination connection
        buffer_size: Maximum bytes read per wakeup
        idle_timeout: Return after this many seconds without traffic, ``None`` to wait forever
        stats: Tracker receiving the byte counts
    """
    while True:
        r, _, _ = select.select([local, remote], [], [], idle_timeout)

        if not r:
            logger.debug(f"Relay idle for {idle_timeout}s, closing")
            return

        for sock in r:
            other = remote if sock is local else local
            try:
                data = sock.recv(buffer_size)
                if not data:
                    return
                other.sendall(data)
            except OSError as sock_error:
                logger.debug(f"Forward error: {sock_error}")
                return
            if sock is local:
                stats.update_bytes(len(data), 0)
            else:
                stats.update_bytes(0, len(data))
