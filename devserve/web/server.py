import socket
import asyncio
import logging
import threading
import contextlib
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

import requests
from hypercorn.asyncio import serve
from hypercorn.config import Config as HypercornConfig
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import FileResponse, HTMLResponse, Response
from starlette.routing import Route, WebSocketRoute

from devserve.config import ConfigurationError, effective_settings as config
from devserve.web.livereload import LIVERELOAD_PATH, LIVERELOAD_SCRIPT_PATH, LiveReloadHub, inject_snippet
from devserve.web.middleware import ApiProxyMiddleware, ApiWebSocketProxy

log = logging.getLogger(__name__)

PathLike = Union[str, Path]


class StaticSite:
    """Serves files from an ordered list of directories; the first match wins."""

    def __init__(self, base_dirs: Sequence[PathLike], inject_livereload: bool = True,
                 spa_fallback: bool = True) -> None:
        self.base_dirs = [Path(d).resolve() for d in base_dirs]
        self.inject_livereload = inject_livereload
        self.spa_fallback = spa_fallback

    def find(self, web_path: str) -> Optional[Path]:
        """Maps a URL path to a file, or None if no base directory has it."""
        relative = web_path.lstrip("/")
        for base in self.base_dirs:
            candidate = (base / relative).resolve()
            # Security: Prevent directory traversal.
            if candidate != base and base not in candidate.parents:
                log.warning(f"Directory traversal attempt blocked for: {web_path}")
                return None
            # No directory listings; a directory serves its index page.
            if candidate.is_dir():
                candidate = candidate / "index.html"
            if candidate.is_file():
                return candidate
        return None

    def find_index(self) -> Optional[Path]:
        for base in self.base_dirs:
            index = base / "index.html"
            if index.is_file():
                return index
        return None

    def file_response(self, path: Path) -> Response:
        if self.inject_livereload and path.suffix.lower() in (".html", ".htm"):
            try:
                html = path.read_bytes().decode("utf-8")
            except UnicodeDecodeError:
                log.debug(f"'{path}' is not UTF-8; serving it without live reload.")
            else:
                return HTMLResponse(inject_snippet(html))
        return FileResponse(path)

    async def handle(self, request: Request) -> Response:
        web_path = request.path_params.get("path", request.url.path)
        path = self.find(web_path)
        # Client-side routes of the single page app resolve to its index page.
        if path is None and self.spa_fallback and "text/html" in request.headers.get("accept", ""):
            path = self.find_index()
        if path is None:
            raise HTTPException(status_code=404)
        return self.file_response(path)


def proxy_target() -> str:
    """Returns the backend URL that API calls are proxied to."""
    if config.SERVE_HTTPS:
        return f"https://localhost:{config.SECURE_DEV_SERVER_PORT}"
    return f"http://localhost:{config.DEV_SERVER_PORT}"


def tls_files() -> Tuple[Optional[str], Optional[str]]:
    """
    Returns the certificate and key the dev server uses when serving HTTPS.

    :raises ConfigurationError: If HTTPS is enabled but the files are missing.
    """
    if not config.SERVE_HTTPS:
        return None, None
    cert = config.FRONTEND_TLS_CERT or config.BACKEND_TLS_CERT
    key = config.FRONTEND_TLS_KEY or config.BACKEND_TLS_KEY
    if not cert or not key or not Path(cert).is_file() or not Path(key).is_file():
        raise ConfigurationError(
            "SERVE_HTTPS is enabled but no usable certificate/key was found. "
            "Set FRONTEND_TLS_CERT and FRONTEND_TLS_KEY."
        )
    return cert, key


def create_app(
    base_dirs: Sequence[PathLike],
    extra_routes: Optional[Dict[str, PathLike]] = None,
    hub: Optional[LiveReloadHub] = None,
    api_target: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> Starlette:
    """
    Builds the development web application.

    :param base_dirs: Directories to serve, in lookup order.
    :param extra_routes: URL prefixes mapped to additional directories.
    :param hub: Live-reload hub; a new one is created if not given.
    :param api_target: Backend URL for the API proxy. None disables the proxy.
    :param session: HTTP session used by the proxy.
    :return Starlette: The ASGI application.
    """
    hub = hub or LiveReloadHub()
    site = StaticSite(base_dirs)

    routes = [
        Route(LIVERELOAD_SCRIPT_PATH, endpoint=hub.script, methods=["GET"]),
        WebSocketRoute(LIVERELOAD_PATH, endpoint=hub.endpoint),
    ]
    if api_target:
        api_route = config.API_ROUTE.rstrip("/")
        ws_proxy = ApiWebSocketProxy(api_target, timeout=config.PROXY_TIMEOUT_SECONDS)
        routes.append(WebSocketRoute(api_route, endpoint=ws_proxy.endpoint))
        routes.append(WebSocketRoute(f"{api_route}/{{path:path}}", endpoint=ws_proxy.endpoint))
    for prefix, directory in (extra_routes or {}).items():
        extra_site = StaticSite([directory], inject_livereload=False, spa_fallback=False)
        routes.append(Route(f"{prefix.rstrip('/')}/{{path:path}}", endpoint=extra_site.handle, methods=["GET", "HEAD"]))
    routes.append(Route("/{path:path}", endpoint=site.handle, methods=["GET", "HEAD"]))

    middleware = []
    if api_target:
        middleware.append(Middleware(
            ApiProxyMiddleware,
            route=config.API_ROUTE,
            target=api_target,
            timeout=config.PROXY_TIMEOUT_SECONDS,
            session=session,
        ))

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        hub.attach(asyncio.get_running_loop())
        try:
            yield
        finally:
            hub.detach()

    app = Starlette(debug=False, routes=routes, middleware=middleware, lifespan=lifespan)
    app.state.hub = hub
    return app


def create_dev_app(hub: LiveReloadHub, include_components: bool = True) -> Starlette:
    """Builds the app that serves the development build plus app sources, proxying /api."""
    extra_routes = {config.COMPONENTS_ROUTE: config.BOWER_COMPONENTS_DIR} if include_components else None
    return create_app(
        # The app directory is served too, for assets to work.
        [config.SERVE_DIR, config.APP_DIR],
        extra_routes=extra_routes,
        hub=hub,
        api_target=proxy_target(),
    )


class WebServerError(RuntimeError):
    """Raised when the web server cannot start or stops without being asked to."""


class WebServer:
    """
    Runs an ASGI app with Hypercorn on a background thread with its own event loop.

    The listening socket is bound in start(), on the calling thread, and handed
    to Hypercorn by file descriptor. A port that is already taken fails start()
    instead of failing later on the server thread.
    """

    def __init__(self, app: Starlette, host: str, port: int,
                 certfile: Optional[str] = None, keyfile: Optional[str] = None) -> None:
        self.app = app
        self.host = host
        self.port = port
        self.certfile = certfile
        self.keyfile = keyfile
        self.error: Optional[BaseException] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._shutdown: Optional[asyncio.Event] = None
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def url(self) -> str:
        scheme = "https" if self.certfile else "http"
        return f"{scheme}://localhost:{self.port}/"

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def bind(self) -> socket.socket:
        """
        Creates the listening socket. Port 0 picks a free port and updates self.port.

        :raises WebServerError: If the address cannot be bound.
        """
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
            sock.listen()
        except OSError as e:
            sock.close()
            log.critical(f"Web server cannot listen on {self.host}:{self.port}: {e}")
            raise WebServerError(f"Cannot listen on {self.host}:{self.port}: {e}") from e
        self.port = sock.getsockname()[1]
        return sock

    def hypercorn_config(self, fd: int) -> HypercornConfig:
        hc_config = HypercornConfig()
        hc_config.bind = [f"fd://{fd}"]
        hc_config.accesslog = logging.getLogger("hypercorn.access")
        hc_config.errorlog = logging.getLogger("hypercorn.error")
        if self.certfile and self.keyfile:
            hc_config.certfile = self.certfile
            hc_config.keyfile = self.keyfile
        return hc_config

    def start(self) -> None:
        """
        Starts serving in the background and returns once the event loop is up.

        :raises WebServerError: If the port cannot be bound.
        """
        if self.is_alive:
            log.debug("Web server already running.")
            return
        sock = self.bind()
        self.error = None
        self._stopping.clear()
        started = threading.Event()
        # Hypercorn takes ownership of the descriptor.
        hc_config = self.hypercorn_config(sock.detach())
        self._thread = threading.Thread(
            target=self._run, args=(hc_config, started), daemon=True, name="WebServerThread"
        )
        self._thread.start()
        started.wait()
        log.info(f"Serving frontend at {self.url}")

    def _run(self, hc_config: HypercornConfig, started: threading.Event) -> None:
        asyncio.run(self._serve(hc_config, started))

    async def _serve(self, hc_config: HypercornConfig, started: threading.Event) -> None:
        self._loop = asyncio.get_running_loop()
        self._shutdown = asyncio.Event()
        started.set()
        try:
            await serve(self.app, hc_config, shutdown_trigger=self._shutdown.wait)
        except Exception as e:
            log.critical(f"Web server on port {self.port} failed: {e}", exc_info=True)
            self.error = e
        finally:
            self._loop = None

    def check(self) -> None:
        """
        Raises if the server thread has ended without stop() being called.

        :raises WebServerError: Carrying the server's exception as its cause, if any.
        """
        if self._thread is None or self._thread.is_alive() or self._stopping.is_set():
            return
        if self.error is not None:
            raise WebServerError(f"Web server on port {self.port} failed: {self.error}") from self.error
        raise WebServerError(f"Web server on port {self.port} stopped unexpectedly.")

    def stop(self, timeout: float = 10.0) -> None:
        """Asks Hypercorn to shut down and waits for the server thread."""
        self._stopping.set()
        loop, shutdown = self._loop, self._shutdown
        if loop is not None and shutdown is not None and not loop.is_closed():
            loop.call_soon_threadsafe(shutdown.set)
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                log.warning(f"Web server did not stop within {timeout}s.")
            else:
                log.info("Web server stopped.")
