"""Core relay library components."""

from .address import AddressType, Command, DatagramEnvelope, TargetAddress
from .association import Association, AssociationRegistry
from .datagram_relay import DatagramRelay
from .proxy_server import SocksProxy, build_server, create_proxy_server
from .proxy_stats import ProxyStats
from .socks_handler import SocksHandler

__all__ = [
    "AddressType",
    "Association",
    "AssociationRegistry",
    "build_server",
    "Command",
    "create_proxy_server",
    "DatagramEnvelope",
    "DatagramRelay",
    "ProxyStats",
    "SocksHandler",
    "SocksProxy",
    "TargetAddress",
]
