"""Allow running the relay with ``python -m socks5_relay``."""

from socks5_relay.cmd.cli import app

if __name__ == "__main__":
    app()
