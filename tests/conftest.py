import socket
import struct
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

import pytest

from socks5_relay.core.config import ProxyConfig
from socks5_relay.core.exceptions import DNSResolutionError
from socks5_relay.core.lib.dns_handler import DNSResolver
from socks5_relay.core.lib.proxy_server import SocksProxy, build_server
from socks5_relay.core.lib.proxy_stats import ProxyStats

LOOPBACK = "127.0.0.1"
LOOPBACK_V6 = "::1"


class StaticResolver(DNSResolver):
    """Resolver answering from a fixed table, never touching the network."""

    def __init__(self, table: dict[str, str] | None = None) -> None:
        super().__init__()
        self.table = table or {}
        self.queries: list[str] = []

    def resolve(self, domain: str) -> str:
        self.queries.append(domain)
        try:
            return self.table[domain]
        except KeyError:
            raise DNSResolutionError(f"no static entry for {domain}") from None


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def recv_all(sock: socket.socket, timeout: float = 2.0) -> bytes:
    sock.settimeout(timeout)
    data = bytearray()
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            return bytes(data)
        data.extend(chunk)


def recv_exactly(sock: socket.socket, size: int, timeout: float = 2.0) -> bytes:
    sock.settimeout(timeout)
    data = bytearray()
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data.extend(chunk)
    return bytes(data)


def free_tcp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((LOOPBACK, 0))
        return sock.getsockname()[1]


def socks_greet(port: int) -> socket.socket:
    """Open a control connection and complete the no-auth negotiation."""
    client = socket.create_connection((LOOPBACK, port), timeout=2.0)
    client.sendall(b"\x05\x01\x00")
    assert recv_exactly(client, 2) == b"\x05\x00"
    return client


def connect_request(host: str, port: int, addr_type: int = 0x01) -> bytes:
    if addr_type == 0x01:
        addr = socket.inet_aton(host)
    elif addr_type == 0x04:
        addr = socket.inet_pton(socket.AF_INET6, host)
    else:
        addr = struct.pack("!B", len(host)) + host.encode()
    return struct.pack("!BBBB", 5, 1, 0, addr_type) + addr + struct.pack("!H", port)


def _family(host: str) -> socket.AddressFamily:
    return socket.AF_INET6 if ":" in host else socket.AF_INET


def has_ipv6_loopback() -> bool:
    if not socket.has_ipv6:
        return False
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_DGRAM) as sock:
            sock.bind((LOOPBACK_V6, 0))
    except OSError:
        return False
    return True


requires_ipv6 = pytest.mark.skipif(not has_ipv6_loopback(), reason="IPv6 loopback not available")


@pytest.fixture
def stats() -> ProxyStats:
    return ProxyStats()


@pytest.fixture
def resolver() -> StaticResolver:
    return StaticResolver({"localhost": LOOPBACK, "backend.test": LOOPBACK})


@pytest.fixture
def start_proxy(stats: ProxyStats, resolver: StaticResolver):
    servers: list[tuple[SocksProxy, threading.Thread]] = []

    def _start(**overrides) -> SocksProxy:
        options = {"host": LOOPBACK, "port": 0, "udp_reply_timeout": 0.5}
        options.update(overrides)
        server = build_server(ProxyConfig(**options), resolver=resolver, stats=stats)
        thread = threading.Thread(target=server.serve_forever, kwargs={"poll_interval": 0.05}, daemon=True)
        thread.start()
        servers.append((server, thread))
        return server

    yield _start

    for server, thread in servers:
        server.shutdown()
        server.server_close()
        thread.join(timeout=2.0)


@pytest.fixture
def proxy_server(start_proxy) -> SocksProxy:
    return start_proxy()


@contextmanager
def tcp_echo_server(host: str) -> Iterator[dict]:
    with socket.socket(_family(host), socket.SOCK_STREAM) as listener:
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind((host, 0))
        listener.listen(8)
        listener.settimeout(0.2)
        stop = threading.Event()
        closed: list[bool] = []

        def echo(conn: socket.socket) -> None:
            with conn:
                conn.settimeout(5.0)
                try:
                    while chunk := conn.recv(4096):
                        conn.sendall(chunk)
                except OSError:
                    pass
                closed.append(True)

        def serve() -> None:
            while not stop.is_set():
                try:
                    conn, _ = listener.accept()
                except socket.timeout:
                    continue
                threading.Thread(target=echo, args=(conn,), daemon=True).start()

        thread = threading.Thread(target=serve, daemon=True)
        thread.start()
        try:
            yield {"host": host, "port": listener.getsockname()[1], "closed": closed}
        finally:
            stop.set()
            thread.join(timeout=1.0)


@pytest.fixture
def local_http_backend():
    response = (
        b"HTTP/1.1 200 OK\r\n"
        b"Content-Length: 11\r\n"
        b"Connection: close\r\n"
        b"\r\n"
        b"hello world"
    )
    requests: list[bytes] = []
    ready = threading.Event()
    stop = threading.Event()

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind((LOOPBACK, 0))
        listener.listen(1)
        listener.settimeout(0.2)

        host, port = listener.getsockname()

        def serve_one() -> None:
            ready.set()
            while not stop.is_set():
                try:
                    conn, _ = listener.accept()
                except socket.timeout:
                    continue
                with conn:
                    conn.settimeout(1.0)
                    data = bytearray()
                    while True:
                        try:
                            chunk = conn.recv(4096)
                        except socket.timeout:
                            break
                        if not chunk:
                            break
                        data.extend(chunk)
                        if b"\r\n\r\n" in data:
                            break
                    requests.append(bytes(data))
                    conn.sendall(response)
                break

        server_thread = threading.Thread(target=serve_one, daemon=True)
        server_thread.start()
        ready.wait(timeout=1.0)

        try:
            yield {
                "host": host,
                "port": port,
                "response": response,
                "requests": requests,
            }
        finally:
            stop.set()
            server_thread.join(timeout=1.0)


@contextmanager
def udp_echo_server(host: str) -> Iterator[dict]:
    with socket.socket(_family(host), socket.SOCK_DGRAM) as sock:
        sock.bind((host, 0))
        sock.settimeout(0.1)
        stop = threading.Event()
        received: list[bytes] = []

        def serve() -> None:
            while not stop.is_set():
                try:
                    data, peer = sock.recvfrom(65535)
                except socket.timeout:
                    continue
                except OSError:
                    return
                received.append(data)
                sock.sendto(b"echo:" + data, peer)

        thread = threading.Thread(target=serve, daemon=True)
        thread.start()
        try:
            yield {"host": host, "port": sock.getsockname()[1], "received": received}
        finally:
            stop.set()
            thread.join(timeout=1.0)


@pytest.fixture
def silent_udp_backend():
    """A bound UDP socket that records payloads and never answers."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind((LOOPBACK, 0))
        sock.settimeout(0.1)
        stop = threading.Event()
        received: list[bytes] = []

        def serve() -> None:
            while not stop.is_set():
                try:
                    data, _ = sock.recvfrom(65535)
                except socket.timeout:
                    continue
                except OSError:
                    return
                received.append(data)

        thread = threading.Thread(target=serve, daemon=True)
        thread.start()
        try:
            yield {"host": LOOPBACK, "port": sock.getsockname()[1], "received": received}
        finally:
            stop.set()
            thread.join(timeout=1.0)


@pytest.fixture
def udp_client():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind((LOOPBACK, 0))
        sock.settimeout(2.0)
        yield sock


@pytest.fixture
def tcp_echo_backend():
    with tcp_echo_server(LOOPBACK) as backend:
        yield backend


@pytest.fixture
def tcp6_echo_backend():
    with tcp_echo_server(LOOPBACK_V6) as backend:
        yield backend


@pytest.fixture
def udp_echo_backend():
    with udp_echo_server(LOOPBACK) as backend:
        yield backend


@pytest.fixture
def udp6_echo_backend():
    with udp_echo_server(LOOPBACK_V6) as backend:
        yield backend
