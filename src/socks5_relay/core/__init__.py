"""Core relay implementation.

This package contains the components of the SOCKS5 relay:
- Wire codec for SOCKS5 addresses and UDP envelopes
- Method negotiation and request dispatch (TCP)
- Bidirectional stream relay for CONNECT
- UDP association bookkeeping and the shared datagram relay
- Statistics tracking and the optional terminal UI

The command-line layer in ``socks5_relay.cmd`` only builds a configuration
and hands it to ``create_proxy_server``.
"""
