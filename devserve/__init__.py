"""
devserve: development workflow orchestration.

Starts and stops the backend process, proxies API calls to it, serves the
frontend with live reload and rebuilds things when source files change.
"""

__version__ = "0.1.0"
