"""Runtime configuration for the relay."""

from dataclasses import dataclass
from typing import Final

from .exceptions import ConfigError

DEFAULT_HOST: Final = "0.0.0.0"
DEFAULT_PORT: Final = 1080
DEFAULT_UDP_REPLY_TIMEOUT: Final = 5.0  # Seconds
DEFAULT_MAX_INFLIGHT_DATAGRAMS: Final = 1024
DEFAULT_BUFFER_SIZE: Final = 32768


@dataclass(frozen=True)
class ProxyConfig:
    """Settings shared by the stream listener and the datagram relay.

    Attributes:
        host: Address both listeners bind to
        port: Port shared by the TCP and UDP listeners (0 picks a free one)
        udp_reply_timeout: How long a forwarded datagram waits for one reply
        max_inflight_datagrams: Upper bound on concurrent datagram workers,
            ``None`` or 0 for unbounded
        connect_timeout: CONNECT dial timeout, ``None`` for the OS default
        idle_timeout: Tear a stream relay down after this many idle seconds,
            ``None`` to wait forever
        buffer_size: Read size for the stream relay
        enforce_association: Only relay datagrams from hosts that hold an
            open UDP ASSOCIATE control connection
        show_ui: Render the live statistics panel
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    udp_reply_timeout: float = DEFAULT_UDP_REPLY_TIMEOUT
    max_inflight_datagrams: int | None = DEFAULT_MAX_INFLIGHT_DATAGRAMS
    connect_timeout: float | None = None
    idle_timeout: float | None = None
    buffer_size: int = DEFAULT_BUFFER_SIZE
    enforce_association: bool = True
    show_ui: bool = False

    def validate(self) -> "ProxyConfig":
        """Check value ranges and return self.

        Raises:
            ConfigError: If any value is out of range
        """
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"port must be in 0..65535, got {self.port}")
        if self.udp_reply_timeout <= 0:
            raise ConfigError("udp_reply_timeout must be positive")
        if self.max_inflight_datagrams is not None and self.max_inflight_datagrams < 0:
            raise ConfigError("max_inflight_datagrams must not be negative")
        for name in ("connect_timeout", "idle_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ConfigError(f"{name} must be positive")
        if self.buffer_size <= 0:
            raise ConfigError("buffer_size must be positive")
        return self
