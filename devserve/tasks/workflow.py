import shutil
import logging
import threading
import functools
from typing import Mapping, Optional

from devserve.backend import BackendSupervisor, Mode, build_backend_args
from devserve.backend.process_utils import backend_launch_target, run_command
from devserve.config import effective_settings as config, load_backend_config
from devserve.tasks.graph import TaskGraph
from devserve.watch import FileWatcher, RebuildEventHandler, default_rules
from devserve.web import LiveReloadHub, WebServer, create_dev_app
from devserve.web.server import tls_files

log = logging.getLogger(__name__)

# Frontend rebuild steps that are plain external commands, by task name.
EXTERNAL_TASKS = {
    "build-frontend": "BUILD_FRONTEND_COMMAND",
    "index": "INDEX_COMMAND",
    "styles": "STYLES_COMMAND",
    "scripts-watch": "SCRIPTS_COMMAND",
    "angular-templates": "TEMPLATES_COMMAND",
}


class DevWorkflow:
    """
    Wires the backend supervisor, the web server and the file watcher into a
    task graph with the serve, spawn and watch tasks.

    Tasks that start something long-running (servers, watcher, backend) return
    once it is up; wait_until_done() blocks until it is time to shut down.
    """

    def __init__(self, supervisor: Optional[BackendSupervisor] = None, graph: Optional[TaskGraph] = None,
                 hub: Optional[LiveReloadHub] = None, environ: Optional[Mapping[str, str]] = None) -> None:
        self.supervisor = supervisor or BackendSupervisor(kill_timeout=config.BACKEND_KILL_TIMEOUT)
        self.graph = graph or TaskGraph()
        self.hub = hub or LiveReloadHub()
        self.environ = environ
        self.web_server: Optional[WebServer] = None
        self.watcher: Optional[FileWatcher] = None
        self.register_tasks()

    def register_tasks(self) -> None:
        graph = self.graph
        graph.add("backend", action=self.build_backend,
                  description="Builds the backend binary into the serve directory.")
        graph.add("backend:prod", action=self.build_backend_prod,
                  description="Builds the production backend binary into the dist directory.")
        for name, setting in EXTERNAL_TASKS.items():
            graph.add(name, action=functools.partial(self.run_external, name, setting),
                      description=f"Runs the command configured in {setting}.")
        graph.add("locales-for-backend:dev", action=self.copy_locales,
                  description="Copies the locale configuration to the serve directory.")
        graph.add("kill-backend", action=self.kill_backend,
                  description="Kills the running backend process, if any, and waits for it to exit.")
        graph.add("spawn-backend", ["backend", "kill-backend", "locales-for-backend:dev"],
                  action=functools.partial(self.spawn_backend, Mode.DEVELOPMENT),
                  description="Restarts the development backend.")
        graph.add("spawn-backend:prod", ["build-frontend", "backend:prod", "kill-backend"],
                  action=functools.partial(self.spawn_backend, Mode.PRODUCTION),
                  description="Restarts the production backend, which also serves the frontend.")
        graph.add("watch", ["index", "angular-templates"], action=self.start_watching,
                  description="Watches source files and rebuilds on change.")
        graph.add("serve", ["spawn-backend", "watch"], action=self.serve_development_mode,
                  description="Serves the app in development mode with rebuild on change.")
        graph.add("serve:nowatch", ["spawn-backend", "index"], action=self.serve_development_mode,
                  description="Serves the app in development mode without watching.")
        graph.add("serve:prod", ["spawn-backend:prod"],
                  description="Serves the app in production mode.")

    #* --- Backend ---
    def build_backend(self) -> None:
        config.SERVE_DIR.mkdir(parents=True, exist_ok=True)
        run_command("backend", config.BACKEND_BUILD_COMMAND)

    def build_backend_prod(self) -> None:
        config.DIST_DIR.mkdir(parents=True, exist_ok=True)
        run_command("backend:prod", config.BACKEND_PROD_BUILD_COMMAND, config.BACKEND_PROD_BUILD_ENV)

    def spawn_backend(self, mode: Mode) -> None:
        """Starts the backend for a mode. kill-backend must have run first."""
        args = build_backend_args(mode, load_backend_config(self.environ))
        executable, cwd = backend_launch_target(mode)
        self.supervisor.start(executable, args, cwd)

    def kill_backend(self) -> None:
        self.supervisor.stop()

    def copy_locales(self) -> None:
        if not config.I18N_DIR.is_dir():
            log.debug(f"No locale directory at '{config.I18N_DIR}'; nothing to copy.")
            return
        config.SERVE_DIR.mkdir(parents=True, exist_ok=True)
        copied = 0
        for locale_file in sorted(config.I18N_DIR.glob("*.json")):
            shutil.copy2(locale_file, config.SERVE_DIR / locale_file.name)
            copied += 1
        log.debug(f"Copied {copied} locale file(s) to '{config.SERVE_DIR}'.")

    #* --- Frontend ---
    def run_external(self, name: str, setting: str) -> None:
        run_command(name, getattr(config, setting))

    def serve_development_mode(self) -> None:
        if self.web_server is not None and self.web_server.is_alive:
            log.debug("Web server already running.")
            return
        certfile, keyfile = tls_files()
        app = create_dev_app(self.hub, include_components=True)
        self.web_server = WebServer(app, config.FRONTEND_SERVER_HOST, config.FRONTEND_SERVER_PORT, certfile, keyfile)
        self.web_server.start()

    def start_watching(self) -> None:
        if self.watcher is not None and self.watcher.is_alive:
            return
        handler = RebuildEventHandler(
            default_rules(),
            run_task=self.graph.run,
            on_reload=self.hub.reload,
            debounce_interval=config.WATCH_DEBOUNCE_SECONDS,
        )
        self.watcher = FileWatcher(handler)
        self.watcher.start()

    #* --- Lifecycle ---
    def has_running_services(self) -> bool:
        return bool(
            (self.web_server is not None and self.web_server.is_alive)
            or (self.watcher is not None and self.watcher.is_alive)
            or self.supervisor.is_running
        )

    def wait_until_done(self, stop_event: Optional[threading.Event] = None, poll_interval: float = 0.5) -> None:
        """
        Blocks until stop_event is set or there is nothing left to wait for.

        With a web server, that is the server going down, which is an error
        unless shutdown() stopped it. Without one (serve:prod), it is the backend
        exiting.

        :raises WebServerError: If the web server failed or stopped on its own.
        """
        stop_event = stop_event or threading.Event()
        while not stop_event.is_set():
            if self.web_server is not None:
                self.web_server.check()
            elif self.watcher is None:
                returncode = self.supervisor.wait(poll_interval)
                if not self.supervisor.is_running:
                    log.info(f"Backend is no longer running (exit code {returncode}).")
                    return
                continue
            stop_event.wait(poll_interval)

    def shutdown(self) -> None:
        """Stops the watcher, the web server and the backend, in that order."""
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        if self.web_server is not None:
            self.web_server.stop()
            self.web_server = None
        self.supervisor.stop()
