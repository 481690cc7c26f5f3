"""Main entry point for the SOCKS5 relay.

Exposes only what the command line layer needs: building a configured
server and running it until interrupted.

Example:
    from socks5_relay.core.config import ProxyConfig
    from socks5_relay.core.proxy import create_proxy_server

    # Serve CONNECT and UDP ASSOCIATE on 0.0.0.0:1080
    create_proxy_server(ProxyConfig(port=1080))
"""

from .lib import build_server, create_proxy_server

__all__ = ["build_server", "create_proxy_server"]
