"""SOCKS5 protocol handler for control connections.

This module implements the TCP side of RFC 1928:
- Method negotiation (only "no authentication" is ever selected)
- Request parsing for IPv4, domain name and IPv6 targets
- CONNECT, relayed through ``relay.forward``
- UDP ASSOCIATE, served by the shared ``DatagramRelay``

BIND, unknown commands and unknown address types are answered with the
matching failure reply before the connection is dropped. Version errors
and short reads happen before any reply can be framed, so those sessions
are simply closed.

Example:
    # The handler is used by the SocksProxy server class
    server = SocksProxy((host, port), SocksHandler, config, relay, associations)
    server.serve_forever()
"""

import socket
import socketserver
import struct
from enum import Enum

from loguru import logger

from socks5_relay.core.exceptions import (
    REP_SUCCESS,
    DNSResolutionError,
    ProtocolVersionError,
    ProxyError,
    StreamIOError,
    UnsupportedAddressType,
    UnsupportedCommand,
    UpstreamUnreachable,
)

from .address import (
    METHOD_NO_AUTH,
    SOCKS_VERSION,
    Command,
    TargetAddress,
    build_reply,
    parse_address_type,
    recv_exact,
)
from .association import Association
from .relay import forward


class SessionState(Enum):
    """Progress of one control connection."""

    AWAITING_METHODS = "awaiting-methods"
    METHOD_CHOSEN = "method-chosen"
    REQUEST_RECEIVED = "request-received"
    DISPATCHED = "dispatched"
    CLOSED = "closed"


class SocksHandler(socketserver.BaseRequestHandler):
    """Handle one SOCKS5 control connection."""

    state: SessionState = SessionState.AWAITING_METHODS

    def _recv(self, size: int) -> bytes:
        return recv_exact(self.request, size)

    def _send(self, data: bytes) -> None:
        try:
            self.request.sendall(data)
        except OSError as exc:
            raise StreamIOError(f"write to client failed: {exc}") from exc

    def _send_response(self, status: int, bind_port: int = 0) -> None:
        """Send a SOCKS5 reply with the zero IPv4 bind address."""
        self._send(build_reply(status, bind_port))

    def _negotiate(self) -> None:
        """Perform SOCKS5 method negotiation.

        Raises:
            ProtocolVersionError: If the greeting is not SOCKS5
            TruncatedInput: If the client hangs up mid-greeting
        """
        version, nmethods = struct.unpack("!BB", self._recv(2))
        if version != SOCKS_VERSION:
            raise ProtocolVersionError(f"unsupported SOCKS version: {version}")

        # Offered methods are ignored since we only support no-auth
        if nmethods:
            self._recv(nmethods)

        self._send(struct.pack("!BB", SOCKS_VERSION, METHOD_NO_AUTH))
        self.state = SessionState.METHOD_CHOSEN

    def _read_request(self) -> tuple[Command, TargetAddress]:
        """Read the request header and target address.

        Replies with the matching failure code before raising for an
        unsupported command or address type.
        """
        version, cmd, _, addr_type = struct.unpack("!BBBB", self._recv(4))
        if version != SOCKS_VERSION:
            raise ProtocolVersionError(f"unsupported SOCKS version: {version}")
        self.state = SessionState.REQUEST_RECEIVED

        try:
            command = Command(cmd)
        except ValueError:
            command = None
        if command is None or command is Command.BIND:
            self._send_response(UnsupportedCommand.reply_code)
            raise UnsupportedCommand(f"unsupported command: {cmd:#04x}")

        try:
            parse_address_type(addr_type)
        except UnsupportedAddressType:
            self._send_response(UnsupportedAddressType.reply_code)
            raise

        return command, TargetAddress.read(addr_type, self._recv)

    def _open_upstream(self, target: TargetAddress) -> socket.socket:
        """Dial the CONNECT destination.

        Raises:
            UpstreamUnreachable: If resolution or the connect fails
        """
        try:
            host = self.server.resolver.resolve(target.host) if target.is_domain else target.host
            return socket.create_connection((host, target.port), timeout=self.server.config.connect_timeout)
        except (OSError, DNSResolutionError) as exc:
            raise UpstreamUnreachable(f"failed to connect to target {target}: {exc}") from exc

    def handle_connect(self, target: TargetAddress) -> None:
        """Handle CONNECT command."""
        try:
            remote = self._open_upstream(target)
        except UpstreamUnreachable:
            self._send_response(UpstreamUnreachable.reply_code)
            raise

        try:
            remote.settimeout(None)
            self._send_response(REP_SUCCESS)
            self.state = SessionState.DISPATCHED
            logger.info(f"Connected {self.client_address[0]}:{self.client_address[1]} to {target}")
            forward(
                self.request,
                remote,
                buffer_size=self.server.config.buffer_size,
                idle_timeout=self.server.config.idle_timeout,
                stats=self.server.stats,
            )
        finally:
            remote.close()

    def handle_udp_associate(self, requested: TargetAddress) -> None:
        """Handle UDP ASSOCIATE command.

        The address the client asked for is ignored; the reply advertises
        the shared relay socket's port.
        """
        relay_port = self.server.datagram_relay.port
        self._send_response(REP_SUCCESS, relay_port)
        self.state = SessionState.DISPATCHED
        logger.info(
            f"UDP ASSOCIATE from {self.client_address[0]}:{self.client_address[1]} "
            f"(requested {requested}), relay port: {relay_port}"
        )

        association = Association(self.request, self.client_address)
        self.server.stats.association_started()
        try:
            with self.server.associations.hold(self.client_address[0]):
                association.wait_closed()
        finally:
            self.server.stats.association_ended()
            logger.debug(f"UDP association for {self.client_address[0]}:{self.client_address[1]} closed")

    def handle(self) -> None:
        """Handle incoming SOCKS5 connection."""
        client = f"{self.client_address[0]}:{self.client_address[1]}"
        self.server.stats.connection_started()
        try:
            self._negotiate()
            command, target = self._read_request()
            if command is Command.CONNECT:
                self.handle_connect(target)
            else:
                self.handle_udp_associate(target)
        except ProxyError as exc:
            logger.debug(f"Session {client} ended: {type(exc).__name__}: {exc}")
        except OSError as exc:
            logger.debug(f"Session {client} I/O error: {exc}")
        finally:
            self.state = SessionState.CLOSED
            self.server.stats.connection_ended()
