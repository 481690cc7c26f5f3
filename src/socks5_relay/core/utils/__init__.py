"""Utility functions and helpers."""

from socks5_relay.core.utils.utils import format_bytes

__all__ = ["format_bytes"]
