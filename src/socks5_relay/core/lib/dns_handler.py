"""DNS resolution for domain-name targets using the system resolver and dnspython."""

import socket
import threading
from collections import OrderedDict
from typing import TYPE_CHECKING, cast

import dns.exception
import dns.resolver
from loguru import logger

from socks5_relay.core.exceptions import DNSResolutionError

if TYPE_CHECKING:
    from dns.resolver import Resolver

# DNS resolver constants
DEFAULT_TIMEOUT = 1.0  # seconds
DEFAULT_LIFETIME = 3.0  # seconds
DEFAULT_NAMESERVERS = [
    "1.1.1.1",  # Cloudflare
    "8.8.8.8",  # Google
    "9.9.9.9",  # Quad9
]
CACHE_SIZE = 1024


class DNSResolver:
    """Resolve domain names, system resolver first, public nameservers second."""

    def __init__(self, nameservers: list[str] | None = None, cache_size: int = CACHE_SIZE) -> None:
        """Initialize the DNS resolver.

        Args:
            nameservers: Fallback nameservers queried through dnspython
            cache_size: Number of positive answers kept in memory
        """
        self.nameservers = list(nameservers or DEFAULT_NAMESERVERS)
        self.cache_size = cache_size
        self._cache: OrderedDict[str, str] = OrderedDict()
        self._lock = threading.Lock()

    def _make_resolver(self, nameservers: list[str]) -> "Resolver":
        resolver = cast("Resolver", dns.resolver.Resolver(configure=False))
        resolver.timeout = DEFAULT_TIMEOUT
        resolver.lifetime = DEFAULT_LIFETIME
        resolver.nameservers = nameservers
        return resolver

    def _try_system_dns(self, domain: str) -> str | None:
        """Try resolving using the system resolver."""
        try:
            infos = socket.getaddrinfo(domain, None, proto=socket.IPPROTO_TCP)
        except (socket.gaierror, UnicodeError) as e:
            logger.debug(f"System DNS resolution failed for {domain}: {e}")
            return None
        # Prefer IPv4 when both families are returned
        infos.sort(key=lambda info: info[0] != socket.AF_INET)
        return infos[0][4][0] if infos else None

    def _try_nameservers(self, domain: str) -> str | None:
        """Try resolving using each fallback nameserver in turn."""
        for nameserver in self.nameservers:
            resolver = self._make_resolver([nameserver])
            for rdtype in ("A", "AAAA"):
                try:
                    answer = resolver.resolve(domain, rdtype)
                    return str(answer[0])
                except dns.exception.DNSException as e:
                    logger.debug(f"Nameserver {nameserver} failed for {domain} ({rdtype}): {e}")
        return None

    def _remember(self, domain: str, ip: str) -> None:
        with self._lock:
            self._cache[domain] = ip
            self._cache.move_to_end(domain)
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

    def resolve(self, domain: str) -> str:
        """Resolve domain name to an IP address.

        Args:
            domain: Domain name to resolve

        Returns:
            str: Resolved IP address

        Raises:
            DNSResolutionError: If resolution fails
        """
        with self._lock:
            cached = self._cache.get(domain)
        if cached is not None:
            return cached

        ip = self._try_system_dns(domain) or self._try_nameservers(domain)
        if ip is None:
            error_msg = f"Could not resolve {domain} using any available method"
            logger.warning(error_msg)
            raise DNSResolutionError(error_msg)

        self._remember(domain, ip)
        return ip


# Global resolver instance
dns_resolver = DNSResolver()
