"""Minimal Language Server Protocol client."""

from .client import LspClient, DEFAULT_REQUEST_TIMEOUT

__all__ = ["LspClient", "DEFAULT_REQUEST_TIMEOUT"]
