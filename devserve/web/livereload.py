import asyncio
import logging
from concurrent.futures import Future
from typing import Optional, Set

from starlette.requests import Request
from starlette.responses import Response
from starlette.websockets import WebSocket, WebSocketDisconnect

log = logging.getLogger(__name__)

LIVERELOAD_PATH = "/__livereload"
LIVERELOAD_SCRIPT_PATH = "/__livereload.js"
LIVERELOAD_SNIPPET = f'<script src="{LIVERELOAD_SCRIPT_PATH}" async></script>'

CLIENT_SCRIPT = """(function () {
  var scheme = window.location.protocol === "https:" ? "wss://" : "ws://";
  var socket = new WebSocket(scheme + window.location.host + "%s");
  socket.onmessage = function (event) {
    if (event.data === "reload") {
      window.location.reload();
    }
  };
})();
""" % LIVERELOAD_PATH


def inject_snippet(html: str) -> str:
    """Adds the live-reload script tag before </body>, or at the end if there is none."""
    marker = html.lower().rfind("</body>")
    if marker == -1:
        return html + LIVERELOAD_SNIPPET
    return html[:marker] + LIVERELOAD_SNIPPET + html[marker:]


class LiveReloadHub:
    """
    Tracks connected browsers and tells them to reload.

    Connections live on the web server's event loop. reload() may be called
    from any thread (the file watcher calls it from its own) and is scheduled
    onto that loop.
    """

    def __init__(self) -> None:
        self._clients: Set[WebSocket] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def detach(self) -> None:
        self._loop = None
        self._clients.clear()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def endpoint(self, websocket: WebSocket) -> None:
        """WebSocket endpoint the injected client script connects to."""
        await websocket.accept()
        self._clients.add(websocket)
        log.debug(f"Live-reload client connected ({self.client_count} total).")
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            self._clients.discard(websocket)
            log.debug(f"Live-reload client disconnected ({self.client_count} left).")

    async def script(self, request: Request) -> Response:
        return Response(CLIENT_SCRIPT, media_type="application/javascript")

    async def broadcast(self, message: str = "reload") -> int:
        """Sends a message to every connected client; returns how many received it."""
        delivered = 0
        for websocket in list(self._clients):
            try:
                await websocket.send_text(message)
                delivered += 1
            except (WebSocketDisconnect, RuntimeError) as e:
                log.debug(f"Dropping live-reload client: {e}")
                self._clients.discard(websocket)
        return delivered

    def reload(self) -> Optional[Future]:
        """
        Asks all connected browsers to reload.

        :return: A future resolving to the number of notified clients, or None
            if the web server is not running.
        """
        if self._loop is None or self._loop.is_closed():
            log.debug("Live reload requested but the web server is not running.")
            return None
        log.info("Reloading connected browsers.")
        return asyncio.run_coroutine_threadsafe(self.broadcast("reload"), self._loop)
