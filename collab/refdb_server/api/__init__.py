"""
API module for RefDB - HTTP/RPC transport.

This module provides the aiohttp application that exposes the document
operations and maps core errors to HTTP responses.
"""

from .http_server import HttpServer, create_http_app

__all__ = [
    "HttpServer",
    "create_http_app",
]
