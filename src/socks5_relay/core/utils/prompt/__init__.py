"""Terminal UI utilities."""

from socks5_relay.core.utils.prompt.proxy_ui import ProxyUI, create_proxy_ui

__all__ = ["create_proxy_ui", "ProxyUI"]
