import socket
import threading

from socks5_relay.core.lib.relay import forward


def _start(local: socket.socket, remote: socket.socket, stats, **kwargs) -> threading.Thread:
    thread = threading.Thread(target=forward, args=(local, remote), kwargs={"stats": stats, **kwargs}, daemon=True)
    thread.start()
    return thread


def test_forward_copies_in_both_directions(stats) -> None:
    client, local = socket.socketpair()
    remote, upstream = socket.socketpair()
    with client, local, remote, upstream:
        thread = _start(local, remote, stats)

        client.sendall(b"request")
        upstream.settimeout(2.0)
        assert upstream.recv(64) == b"request"

        upstream.sendall(b"response")
        client.settimeout(2.0)
        assert client.recv(64) == b"response"

        client.close()
        thread.join(timeout=2.0)
        assert not thread.is_alive()

    assert stats.total_bytes_sent == len(b"request")
    assert stats.total_bytes_received == len(b"response")


def test_forward_returns_when_first_direction_ends(stats) -> None:
    client, local = socket.socketpair()
    remote, upstream = socket.socketpair()
    with client, local, remote:
        thread = _start(local, remote, stats)

        # Client side stays open; closing the destination alone ends the relay
        upstream.close()

        thread.join(timeout=2.0)
        assert not thread.is_alive()


def test_forward_idle_timeout(stats) -> None:
    client, local = socket.socketpair()
    remote, upstream = socket.socketpair()
    with client, local, remote, upstream:
        thread = _start(local, remote, stats, idle_timeout=0.1)

        thread.join(timeout=2.0)
        assert not thread.is_alive()
