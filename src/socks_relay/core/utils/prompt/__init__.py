"""Prompt and UI utilities."""

from socks_relay.core.utils.prompt.prompt import PromptHandler, console
from socks_relay.core.utils.prompt.proxy_ui import ProxyUI, create_proxy_ui

__all__ = ["console", "create_proxy_ui", "PromptHandler", "ProxyUI"]
