"""
Web package for devserve.

Serves the frontend with live reload and proxies API calls to the backend.
"""

from .livereload import LiveReloadHub
from .server import StaticSite, WebServer, WebServerError, create_app, create_dev_app

__all__ = ["LiveReloadHub", "StaticSite", "WebServer", "WebServerError", "create_app", "create_dev_app"]
