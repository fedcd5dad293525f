"""Command line interface modules.

This package provides the command-line tools for:
- Starting and managing the SOCKS5 server
- Probing a SOCKS5 server with the client handshake
- Listing local interfaces the server can bind to
"""
