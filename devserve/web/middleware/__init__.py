"""
Middleware package for the development web server.
"""

from .proxy import ApiProxyMiddleware, ApiWebSocketProxy

__all__ = ["ApiProxyMiddleware", "ApiWebSocketProxy"]
