"""Custom exceptions for the relay.

Every failure is local to one control session or one datagram. Protocol
errors that can still be reported to the client carry the SOCKS5 reply
code they map to in ``reply_code``; the handler sends it before closing.

Example:
    try:
        target = TargetAddress.read(addr_type, recv)
    except UnsupportedAddressType as e:
        send_reply(sock, e.reply_code)
"""

from typing import ClassVar

# SOCKS5 reply codes
REP_SUCCESS = 0x00
REP_GENERAL_FAILURE = 0x05
REP_COMMAND_NOT_SUPPORTED = 0x07
REP_ADDRESS_TYPE_NOT_SUPPORTED = 0x08


class ProxyError(Exception):
    """Base exception for relay errors."""

    reply_code: ClassVar[int | None] = None


class ConfigError(ProxyError):
    """Raised when the relay configuration is invalid."""


class ProtocolVersionError(ProxyError):
    """Raised when a client speaks a SOCKS version other than 5."""


class UnsupportedCommand(ProxyError):
    """Raised for BIND and for unknown command bytes."""

    reply_code = REP_COMMAND_NOT_SUPPORTED


class UnsupportedAddressType(ProxyError):
    """Raised for an address type byte outside IPv4, domain and IPv6."""

    reply_code = REP_ADDRESS_TYPE_NOT_SUPPORTED


class TruncatedInput(ProxyError):
    """Raised when fewer bytes are available than the wire format requires."""


class UpstreamUnreachable(ProxyError):
    """Raised when the CONNECT destination cannot be reached."""

    reply_code = REP_GENERAL_FAILURE


class StreamIOError(ProxyError):
    """Raised on a read or write failure on the control or destination stream."""


class MalformedDatagram(ProxyError):
    """Raised when a UDP envelope is rejected by the datagram relay."""


class DNSResolutionError(ProxyError):
    """Raised when DNS resolution fails."""
