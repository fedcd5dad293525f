"""Core SOCKS5 implementation.

This package contains the protocol and runtime components:
- Wire protocol (address codec, frame builders, handshake parsers)
- Authentication capabilities (no-auth, username/password)
- Multi-threaded server and session relay manager
- Client connector and tunnel
- Configuration, statistics and exception types

The core package provides everything needed to embed a SOCKS5 server or
client, while the command-line interface lives in ``socks_relay.cmd``.
"""
