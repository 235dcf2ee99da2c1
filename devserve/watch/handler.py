import time
import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from watchdog.observers import Observer
from watchdog.events import (
    EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED,
    FileSystemEvent, FileSystemEventHandler,
)

from devserve.watch.rules import WatchRule

log = logging.getLogger(__name__)

HANDLED_EVENT_TYPES = {EVENT_TYPE_CREATED, EVENT_TYPE_DELETED, EVENT_TYPE_MODIFIED, EVENT_TYPE_MOVED}


class RebuildEventHandler(FileSystemEventHandler):
    """A watchdog event handler that runs rebuild tasks for changed source files."""

    def __init__(self, rules: Iterable[WatchRule], run_task: Callable[[str], object],
                 on_reload: Optional[Callable[[], object]] = None, debounce_interval: float = 0.5):
        super().__init__()
        self.rules = list(rules)
        self.run_task = run_task
        self.on_reload = on_reload
        self.debounce_interval = debounce_interval
        self.debounce_cache: Dict[Tuple[str, Tuple[str, ...]], float] = {}

    def _event_paths(self, event: FileSystemEvent) -> List[Path]:
        paths = [Path(event.src_path).resolve()]
        dest_path = getattr(event, "dest_path", "")
        if dest_path:
            paths.append(Path(dest_path).resolve())
        return paths

    def plan(self, event: FileSystemEvent) -> Tuple[List[str], bool]:
        """
        Determines which tasks an event triggers.

        :return tuple: (task names in rule order without duplicates, whether to reload browsers).
        """
        tasks: List[str] = []
        reload = False
        for path in self._event_paths(event):
            for rule in self.rules:
                if not rule.matches(path):
                    continue
                for task in rule.tasks_for(event.event_type):
                    if task not in tasks:
                        tasks.append(task)
                reload = reload or rule.reload
        return tasks, reload

    def on_any_event(self, event: FileSystemEvent) -> None:
        """The main event handler method for watchdog, called on any file change."""
        if event.is_directory or event.event_type not in HANDLED_EVENT_TYPES:
            return

        tasks, reload = self.plan(event)
        if not tasks:
            return
        if not self._should_process_event(str(event.src_path), tuple(tasks)):
            return

        log.info(f"File {event.event_type}: {event.src_path} -> {', '.join(tasks)}")
        succeeded = True
        for task in tasks:
            try:
                self.run_task(task)
            except Exception as e:
                # Keep watching; the next save gets another chance.
                log.error(f"Rebuild task '{task}' failed: {e}")
                succeeded = False

        if reload and succeeded and self.on_reload:
            self.on_reload()

    def _should_process_event(self, path_str: str, tasks: Tuple[str, ...]) -> bool:
        """Check if the event should be processed or skipped due to debouncing."""
        now = time.monotonic()
        key = (path_str, tasks)
        if self.debounce_cache.get(key, float("-inf")) > now - self.debounce_interval:
            return False
        self.debounce_cache[key] = now
        return True


class FileWatcher:
    """Owns the watchdog observer that feeds a RebuildEventHandler."""

    def __init__(self, handler: RebuildEventHandler) -> None:
        self.handler = handler
        self.observer: Optional[Observer] = None

    def watched_directories(self) -> Dict[Path, bool]:
        """Directories to schedule, each with whether it must be watched recursively."""
        directories: Dict[Path, bool] = {}
        for rule in self.handler.rules:
            directory = rule.directory.resolve()
            directories[directory] = directories.get(directory, False) or rule.recursive
        return directories

    @property
    def is_alive(self) -> bool:
        return self.observer is not None and self.observer.is_alive()

    def start(self) -> None:
        if self.is_alive:
            log.debug("File watcher already running.")
            return
        self.observer = Observer()
        for directory, recursive in self.watched_directories().items():
            if not directory.is_dir():
                log.warning(f"Not watching '{directory}': directory does not exist.")
                continue
            self.observer.schedule(self.handler, str(directory), recursive=recursive)
            log.debug(f"Watching '{directory}' (recursive={recursive}).")
        self.observer.start()
        log.info("File watcher started.")

    def stop(self) -> None:
        if self.observer is None:
            return
        self.observer.stop()
        self.observer.join()
        self.observer = None
        log.info("File watcher stopped.")
