import psutil
import logging
import threading
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Union

log = logging.getLogger(__name__)


class BackendSpawnError(RuntimeError):
    """Raised when the backend binary cannot be started (missing or not executable)."""


class BackendAlreadyRunningError(RuntimeError):
    """Raised when start() is called while a backend process is still tracked."""


class ProcessHandle:
    """A spawned backend process and the event that fires once it has exited."""

    def __init__(self, popen: subprocess.Popen) -> None:
        self.popen = popen
        self.process = psutil.Process(popen.pid)
        self.exited = threading.Event()
        self.returncode: Optional[int] = None

    @property
    def pid(self) -> int:
        return self.popen.pid

    def __repr__(self) -> str:
        state = f"exited({self.returncode})" if self.exited.is_set() else "running"
        return f"<ProcessHandle pid={self.pid} {state}>"


class BackendSupervisor:
    """
    Owns the lifecycle of the single backend child process.

    The supervisor is either Stopped (no tracked handle) or Running (one tracked
    handle). An exit observer thread clears the handle when the process ends for
    any reason, so a backend that crashes on its own is seen as stopped.
    start() and stop() are serialized by a lifecycle lock; the tracked handle
    itself is guarded by a separate lock that the exit observer also takes, so
    a stop() waiting for the exit never blocks the observer.
    """

    def __init__(self, kill_timeout: Optional[float] = None) -> None:
        """
        :param kill_timeout: Seconds to wait after SIGTERM before escalating to
            SIGKILL. None waits for the process to exit on its own, forever if need be.
        """
        self.kill_timeout = kill_timeout
        self._current: Optional[ProcessHandle] = None
        self._handle_lock = threading.Lock()
        self._lifecycle_lock = threading.RLock()

    @property
    def current(self) -> Optional[ProcessHandle]:
        with self._handle_lock:
            return self._current

    @property
    def is_running(self) -> bool:
        return self.current is not None

    @property
    def pid(self) -> Optional[int]:
        handle = self.current
        return handle.pid if handle else None

    def start(self, executable: Union[str, Path], args: Sequence[str], cwd: Union[str, Path]) -> ProcessHandle:
        """
        Spawns the backend with inherited stdio and starts watching for its exit.

        :param executable: Path to the backend binary.
        :param args: Arguments passed to the binary.
        :param cwd: Working directory for the process.
        :return ProcessHandle: The handle now tracked as current.
        :raises BackendAlreadyRunningError: If a backend is still tracked.
        :raises BackendSpawnError: If the process could not be created.
        """
        with self._lifecycle_lock:
            running = self.current
            if running is not None:
                raise BackendAlreadyRunningError(
                    f"Backend is already running with PID {running.pid}. Stop it first."
                )

            cmd: List[str] = [str(executable), *args]
            log.info(f"Starting backend: {' '.join(cmd)} (cwd: {cwd})")
            try:
                popen = subprocess.Popen(cmd, cwd=str(cwd))
            except OSError as e:
                log.critical(f"Failed to start backend '{executable}': {e}", exc_info=True)
                raise BackendSpawnError(f"Could not start backend '{executable}': {e}") from e

            handle = ProcessHandle(popen)
            with self._handle_lock:
                self._current = handle

            threading.Thread(
                target=self._observe_exit,
                args=(handle,),
                daemon=True,
                name=f"BackendExitObserver-{handle.pid}"
            ).start()
            log.info(f"Backend started successfully with PID: {handle.pid}")
            return handle

    def _observe_exit(self, handle: ProcessHandle) -> None:
        """Waits for the process to end, then marks the supervisor as stopped."""
        returncode = handle.popen.wait()
        with self._handle_lock:
            if self._current is handle:
                self._current = None
        handle.returncode = returncode
        handle.exited.set()

        if returncode == 0:
            log.info(f"Backend process {handle.pid} exited.")
        else:
            log.warning(f"Backend process {handle.pid} exited with code {returncode}.")

    def stop(self) -> None:
        """
        Stops the tracked backend and returns only once it has actually exited.

        Calling this while stopped is a no-op. Without a kill timeout this blocks
        until the process exits, however long that takes.
        """
        with self._lifecycle_lock:
            handle = self.current
            if handle is None:
                log.debug("No backend process running; nothing to stop.")
                return

            log.info(f"Stopping backend (PID {handle.pid})...")
            self._send(handle, "terminate")

            if not handle.exited.wait(self.kill_timeout):
                log.warning(
                    f"Backend (PID {handle.pid}) did not exit within {self.kill_timeout}s. Killing it."
                )
                self._send(handle, "kill")
                handle.exited.wait()

            log.info(f"Backend (PID {handle.pid}) stopped.")

    def wait(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Waits for the current backend to exit.

        :return: The exit code, or None if nothing is running or the timeout expired.
        """
        handle = self.current
        if handle is None or not handle.exited.wait(timeout):
            return None
        return handle.returncode

    @staticmethod
    def _send(handle: ProcessHandle, method: str) -> None:
        try:
            log.debug(f"Sending {method} to backend (PID {handle.pid})")
            getattr(handle.process, method)()
        except psutil.NoSuchProcess:
            log.debug(f"Backend process {handle.pid} already gone before {method}.")
