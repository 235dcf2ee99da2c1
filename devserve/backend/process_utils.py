import os
import sys
import shlex
import logging
import threading
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from devserve.backend.args import Mode, coerce_mode
from devserve.config import effective_settings as config

log = logging.getLogger(__name__)


class CommandFailedError(RuntimeError):
    """Raised when an external build command exits with a non-zero status."""

    def __init__(self, name: str, returncode: int) -> None:
        super().__init__(f"Command for '{name}' failed with exit code {returncode}.")
        self.name = name
        self.returncode = returncode


#* --- Executable Paths ---
def get_executable_path(base_path: Path) -> Path:
    """Returns the platform-specific full path for an executable."""
    return base_path.with_suffix(".exe") if sys.platform == "win32" else base_path


def backend_launch_target(mode: Union[Mode, str]) -> Tuple[Path, Path]:
    """
    Returns the backend binary and the working directory for a mode.

    Development runs the binary built into the serve directory; production runs
    the one in the dist directory, next to the frontend it serves.

    :return tuple: (executable path, working directory).
    """
    root = config.DIST_DIR if coerce_mode(mode) is Mode.PRODUCTION else config.SERVE_DIR
    return get_executable_path(root / config.BACKEND_BINARY_NAME), root


#* --- External Commands ---
def format_command(template: str) -> List[str]:
    """Fills the path placeholders of a command template and splits it into argv."""
    command = template.format(
        serve_dir=config.SERVE_DIR,
        dist_dir=config.DIST_DIR,
        binary=config.BACKEND_BINARY_NAME,
        backend_package=config.BACKEND_PACKAGE,
        base_dir=config.BASE_DIR,
    )
    return shlex.split(command, posix=sys.platform != "win32")


def _read_pipe(pipe, process_name: str, level: int) -> None:
    """Target function for reader threads. Reads and logs lines from a subprocess pipe."""
    proc_logger = logging.getLogger(f"proc.{process_name}")
    try:
        for line_bytes in iter(pipe.readline, b""):
            line = line_bytes.decode("utf-8", errors="replace").rstrip()
            if not line:
                continue
            proc_logger.log(level, line)
    except (OSError, ValueError) as e:
        proc_logger.debug(f"Pipe reader for {process_name} stream exited: {e}")
    finally:
        pipe.close()


def log_process_output(process: subprocess.Popen, name: str) -> List[threading.Thread]:
    """Starts background threads to consume and log a process's stdout/stderr."""
    readers = []
    if process.stdout:
        readers.append(threading.Thread(target=_read_pipe, args=(process.stdout, name, logging.INFO), daemon=True))
    if process.stderr:
        readers.append(threading.Thread(target=_read_pipe, args=(process.stderr, name, logging.ERROR), daemon=True))
    for reader in readers:
        reader.start()
    return readers


def run_command(name: str, template: str, extra_env: Optional[Dict[str, str]] = None) -> bool:
    """
    Runs an external build command to completion, logging its output.

    :param name: Logical name used for the `proc.<name>` logger.
    :param template: Command template; an empty template means nothing to run.
    :param extra_env: Variables added to the inherited environment.
    :return bool: True if a command ran, False if none was configured.
    :raises CommandFailedError: If the command exits with a non-zero status.
    """
    if not template.strip():
        log.debug(f"No command configured for '{name}'; skipping.")
        return False

    args = format_command(template)
    env = {**os.environ, **(extra_env or {})}
    log.info(f"Running '{name}': {' '.join(args)}")
    process = subprocess.Popen(
        args,
        cwd=str(config.BASE_DIR),
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    readers = log_process_output(process, name)
    returncode = process.wait()
    for reader in readers:
        reader.join()

    if returncode != 0:
        log.error(f"'{name}' failed with exit code {returncode}.")
        raise CommandFailedError(name, returncode)
    log.info(f"'{name}' finished successfully.")
    return True
