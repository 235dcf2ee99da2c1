import ssl
import asyncio
import logging
import functools
from typing import Iterable, List, Optional, Tuple
from urllib.parse import urlsplit

import requests
import urllib3
from starlette.types import ASGIApp
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.websockets import WebSocket, WebSocketDisconnect
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

log = logging.getLogger(__name__)

HOP_BY_HOP_HEADERS = {
    "connection", "keep-alive", "proxy-authenticate", "proxy-authorization",
    "te", "trailers", "transfer-encoding", "upgrade",
}
# Dropped from upstream responses: requests has already decoded the body.
STRIPPED_RESPONSE_HEADERS = HOP_BY_HOP_HEADERS | {"content-encoding", "content-length"}
# Client headers passed on when opening the upstream WebSocket.
WEBSOCKET_FORWARDED_HEADERS = ("cookie", "authorization", "origin")
# Close codes that may not be sent in a close frame.
RESERVED_CLOSE_CODES = {1005, 1006, 1015}


def upstream_header_items(upstream: requests.Response) -> List[Tuple[str, str]]:
    """
    Returns the upstream response headers with repeated headers kept apart.

    requests folds repeats such as Set-Cookie into one comma-joined value; the
    urllib3 header dict behind it still has every occurrence.
    """
    raw_headers = getattr(getattr(upstream, "raw", None), "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        return [(key, value) for key in raw_headers for value in raw_headers.getlist(key)]
    return list(upstream.headers.items())


class ApiProxyMiddleware(BaseHTTPMiddleware):
    """
    Forwards HTTP requests under a URL prefix to the backend.

    The Host header is rewritten to the target's, and TLS certificates are not
    verified since the development backend uses self-signed ones. WebSocket
    connections never reach this middleware; see ApiWebSocketProxy.
    """

    def __init__(self, app: ASGIApp, route: str, target: str, timeout: float = 60.0,
                 session: Optional[requests.Session] = None) -> None:
        super().__init__(app)
        self.route = route.rstrip("/")
        self.target = target.rstrip("/")
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()
        self.session.verify = False
        if self.target.startswith("https://"):
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def matches(self, path: str) -> bool:
        return path == self.route or path.startswith(self.route + "/")

    def _upstream_url(self, request: Request) -> str:
        url = self.target + request.url.path
        if request.url.query:
            url += f"?{request.url.query}"
        return url

    def _upstream_headers(self, request: Request) -> dict:
        headers = {
            key: value for key, value in request.headers.items()
            if key.lower() not in HOP_BY_HOP_HEADERS and key.lower() not in ("host", "content-length")
        }
        headers["Host"] = urlsplit(self.target).netloc
        if request.client:
            headers["X-Forwarded-For"] = request.client.host
        headers["X-Forwarded-Host"] = request.headers.get("host", "")
        headers["X-Forwarded-Proto"] = request.url.scheme
        return headers

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.matches(request.url.path):
            return await call_next(request)

        url = self._upstream_url(request)
        body = await request.body()
        send = functools.partial(
            self.session.request,
            request.method,
            url,
            headers=self._upstream_headers(request),
            data=body or None,
            allow_redirects=False,
            timeout=self.timeout,
        )
        try:
            upstream = await asyncio.get_running_loop().run_in_executor(None, send)
        except requests.RequestException as e:
            log.warning(f"Proxy error for {request.method} {request.url.path} -> {url}: {e}")
            return PlainTextResponse("Bad Gateway", status_code=502)

        log.debug(f"Proxied {request.method} {request.url.path} -> {url} [{upstream.status_code}]")
        response = Response(content=upstream.content, status_code=upstream.status_code)
        response.raw_headers.extend(
            (key.lower().encode("latin-1"), value.encode("latin-1"))
            for key, value in upstream_header_items(upstream)
            if key.lower() not in STRIPPED_RESPONSE_HEADERS
        )
        return response


class ApiWebSocketProxy:
    """
    Relays WebSocket connections under the API route to the backend.

    The upstream connection is opened before the client's handshake is
    accepted, so an unreachable backend rejects the client instead of
    accepting and closing it.
    """

    def __init__(self, target: str, timeout: float = 60.0) -> None:
        target = target.rstrip("/")
        self.target = "ws" + target[len("http"):] if target.startswith("http") else target
        self.timeout = timeout

    def _upstream_url(self, websocket: WebSocket) -> str:
        url = self.target + websocket.url.path
        if websocket.url.query:
            url += f"?{websocket.url.query}"
        return url

    def _ssl_context(self) -> Optional[ssl.SSLContext]:
        if not self.target.startswith("wss://"):
            return None
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    def _forwarded_headers(self, websocket: WebSocket) -> Iterable[Tuple[str, str]]:
        return [(name, websocket.headers[name]) for name in WEBSOCKET_FORWARDED_HEADERS if name in websocket.headers]

    async def endpoint(self, websocket: WebSocket) -> None:
        url = self._upstream_url(websocket)
        subprotocols = websocket.scope.get("subprotocols") or None
        try:
            upstream = await connect(
                url,
                additional_headers=self._forwarded_headers(websocket),
                subprotocols=subprotocols,
                ssl=self._ssl_context(),
                open_timeout=self.timeout,
            )
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            log.warning(f"WebSocket proxy error for {websocket.url.path} -> {url}: {e}")
            await websocket.close(code=1011)
            return

        log.debug(f"Proxying WebSocket {websocket.url.path} -> {url}")
        async with upstream:
            await websocket.accept(subprotocol=upstream.subprotocol)
            to_upstream = asyncio.ensure_future(self._client_to_upstream(websocket, upstream))
            to_client = asyncio.ensure_future(self._upstream_to_client(upstream, websocket))
            done, pending = await asyncio.wait({to_upstream, to_client}, return_when=asyncio.FIRST_COMPLETED)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

            if to_client in done:
                # The backend hung up first; pass its close code on to the browser.
                code = upstream.close_code
                if code is None or code in RESERVED_CLOSE_CODES:
                    code = 1000
                try:
                    await websocket.close(code=code)
                except RuntimeError as e:
                    log.debug(f"Client WebSocket already closed: {e}")
            for task in done:
                task.result()

    @staticmethod
    async def _client_to_upstream(websocket: WebSocket, upstream: ClientConnection) -> None:
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    return
                if message.get("text") is not None:
                    await upstream.send(message["text"])
                elif message.get("bytes") is not None:
                    await upstream.send(message["bytes"])
        except (ConnectionClosed, WebSocketDisconnect):
            return

    @staticmethod
    async def _upstream_to_client(upstream: ClientConnection, websocket: WebSocket) -> None:
        try:
            async for message in upstream:
                if isinstance(message, str):
                    await websocket.send_text(message)
                else:
                    await websocket.send_bytes(message)
        except ConnectionClosed:
            return
        except (WebSocketDisconnect, RuntimeError) as e:
            log.debug(f"Client WebSocket went away while relaying: {e}")
