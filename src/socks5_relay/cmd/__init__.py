"""Command line interface modules.

The commands build a ``ProxyConfig`` from options and environment
variables and hand it to the core server.
"""
