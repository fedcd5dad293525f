"""SOCKS5 wire protocol: constants, address codec, frame builders and parsers.

Modules here perform no I/O. Parsers consume bytes handed to them and emit
typed events; the runtime in ``socks_relay.core.lib`` owns the sockets.
"""
