"""SOCKS5 wire codec for addresses, replies and UDP envelopes.

This module implements the byte layouts of RFC 1928 used by the relay:
- ``ATYP | ADDR | PORT`` target addresses (IPv4, domain name, IPv6)
- Connection replies (always with a zero IPv4 bind address)
- UDP request/reply envelopes (``RSV | FRAG | ATYP | ADDR | PORT | DATA``)

Decoding works against any ``read(n)`` callable that returns exactly ``n``
bytes or raises ``TruncatedInput``, so the same code parses a TCP stream
(``recv_exact``) and an in-memory datagram (``BufferReader``).

Example:
    target = TargetAddress.read(AddressType.IPV4, BufferReader(b"\\x7f\\x00\\x00\\x01\\x00P").read)
    assert (target.host, target.port) == ("127.0.0.1", 80)
"""

import socket
import struct
from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum
from typing import Final

from socks5_relay.core.exceptions import (
    MalformedDatagram,
    TruncatedInput,
    UnsupportedAddressType,
)

SOCKS_VERSION: Final = 5
METHOD_NO_AUTH: Final = 0
ZERO_BIND_ADDR: Final = "0.0.0.0"

# RSV(2) + FRAG(1) + ATYP(1) + shortest ADDR/PORT (IPv4: 4 + 2)
MIN_ENVELOPE_SIZE: Final = 10
MAX_DOMAIN_LENGTH: Final = 255

Reader = Callable[[int], bytes]


class AddressType(IntEnum):
    """Address type byte (ATYP)."""

    IPV4 = 0x01
    DOMAIN = 0x03
    IPV6 = 0x04


class Command(IntEnum):
    """Request command byte (CMD)."""

    CONNECT = 0x01
    BIND = 0x02
    UDP_ASSOCIATE = 0x03


def parse_address_type(value: int) -> AddressType:
    """Map an ATYP byte to ``AddressType``.

    Raises:
        UnsupportedAddressType: If the byte is not a known address type
    """
    try:
        return AddressType(value)
    except ValueError:
        raise UnsupportedAddressType(f"unsupported address type: {value:#04x}") from None


def recv_exact(sock: socket.socket, size: int) -> bytes:
    """Read exactly ``size`` bytes from a stream socket.

    Raises:
        TruncatedInput: If the peer closes the stream first
    """
    data = bytearray()
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            raise TruncatedInput(f"expected {size} bytes, stream ended after {len(data)}")
        data.extend(chunk)
    return bytes(data)


class BufferReader:
    """Cursor over an in-memory buffer with the same contract as ``recv_exact``."""

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self.data = data
        self.offset = offset

    def read(self, size: int) -> bytes:
        end = self.offset + size
        if end > len(self.data):
            raise TruncatedInput(
                f"expected {size} bytes at offset {self.offset}, only {len(self.data) - self.offset} left"
            )
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def remaining(self) -> bytes:
        return self.data[self.offset :]


@dataclass(frozen=True)
class TargetAddress:
    """A destination as it appeared on the wire.

    The address type is kept alongside the host so that replies are
    re-encoded with the same tag the client used. Domain names are decoded
    with ``surrogateescape`` so arbitrary bytes survive a round trip.

    Attributes:
        addr_type: Wire address type
        host: Dotted IPv4, IPv6 text form, or the domain name
        port: Port number (0..65535)
    """

    addr_type: AddressType
    host: str
    port: int

    @classmethod
    def read(cls, addr_type: int, read: Reader) -> "TargetAddress":
        """Consume ``ADDR | PORT`` for ``addr_type`` from ``read``.

        Raises:
            UnsupportedAddressType: If ``addr_type`` is unknown
            TruncatedInput: If ``read`` runs out of bytes
        """
        atyp = parse_address_type(addr_type)
        if atyp is AddressType.IPV4:
            host = socket.inet_ntop(socket.AF_INET, read(4))
        elif atyp is AddressType.IPV6:
            host = socket.inet_ntop(socket.AF_INET6, read(16))
        else:
            (length,) = struct.unpack("!B", read(1))
            host = read(length).decode("utf-8", "surrogateescape")
        (port,) = struct.unpack("!H", read(2))
        return cls(atyp, host, port)

    def encode(self) -> bytes:
        """Return ``ATYP | ADDR | PORT``.

        Raises:
            ValueError: If the host does not fit the address type
        """
        if self.addr_type is AddressType.IPV4:
            addr = socket.inet_pton(socket.AF_INET, self.host)
        elif self.addr_type is AddressType.IPV6:
            addr = socket.inet_pton(socket.AF_INET6, self.host)
        else:
            raw = self.host.encode("utf-8", "surrogateescape")
            if not 1 <= len(raw) <= MAX_DOMAIN_LENGTH:
                raise ValueError(f"domain name must be 1..{MAX_DOMAIN_LENGTH} bytes, got {len(raw)}")
            addr = struct.pack("!B", len(raw)) + raw
        return struct.pack("!B", self.addr_type) + addr + struct.pack("!H", self.port)

    @property
    def is_domain(self) -> bool:
        return self.addr_type is AddressType.DOMAIN

    def __str__(self) -> str:
        if self.addr_type is AddressType.IPV6:
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"


def build_reply(status: int, bind_port: int = 0) -> bytes:
    """Build a connection reply with the zero IPv4 bind address."""
    response = struct.pack("!BBBB", SOCKS_VERSION, status, 0, AddressType.IPV4)
    return response + socket.inet_aton(ZERO_BIND_ADDR) + struct.pack("!H", bind_port)


@dataclass(frozen=True)
class DatagramEnvelope:
    """One UDP relay packet: destination plus payload, never fragmented."""

    target: TargetAddress
    payload: bytes

    @classmethod
    def decode(cls, data: bytes) -> "DatagramEnvelope":
        """Parse ``RSV | FRAG | ATYP | ADDR | PORT | DATA``.

        Raises:
            MalformedDatagram: Short packet, nonzero reserved or fragment byte
            UnsupportedAddressType: Unknown address type
            TruncatedInput: Address runs past the end of the packet
        """
        if len(data) < MIN_ENVELOPE_SIZE:
            raise MalformedDatagram(f"packet too short: {len(data)} bytes")
        reader = BufferReader(data)
        rsv, frag, atyp = struct.unpack("!HBB", reader.read(4))
        if rsv != 0:
            raise MalformedDatagram(f"reserved field is {rsv:#06x}")
        if frag != 0:
            raise MalformedDatagram(f"fragmentation not supported (frag={frag})")
        target = TargetAddress.read(atyp, reader.read)
        return cls(target, reader.remaining())

    def encode(self) -> bytes:
        return struct.pack("!HB", 0, 0) + self.target.encode() + self.payload
