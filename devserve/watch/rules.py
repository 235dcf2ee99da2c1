from fnmatch import fnmatch
from pathlib import Path
from dataclasses import dataclass
from typing import List, Optional, Tuple

from watchdog.events import EVENT_TYPE_MODIFIED

from devserve.config import effective_settings as config


@dataclass(frozen=True)
class WatchRule:
    """
    Maps file-system events under a directory to the tasks that rebuild them.

    When `structure_tasks` is set, created, deleted and moved files run those
    tasks instead of `tasks`, which then only apply to modifications.
    """
    directory: Path
    pattern: str
    tasks: Tuple[str, ...]
    recursive: bool = True
    structure_tasks: Optional[Tuple[str, ...]] = None
    reload: bool = True

    def matches(self, path: Path) -> bool:
        directory = self.directory.resolve()
        parent = path.parent
        if self.recursive:
            if parent != directory and directory not in parent.parents:
                return False
        elif parent != directory:
            return False
        return fnmatch(path.name, self.pattern)

    def tasks_for(self, event_type: str) -> Tuple[str, ...]:
        if self.structure_tasks is not None and event_type != EVENT_TYPE_MODIFIED:
            return self.structure_tasks
        return self.tasks


def default_rules() -> List[WatchRule]:
    """The rules used by the 'watch' task."""
    frontend = config.FRONTEND_SRC_DIR
    return [
        WatchRule(frontend, "index.html", ("index",), recursive=False),
        WatchRule(config.BASE_DIR, "bower.json", ("index",), recursive=False),
        # A changed stylesheet only needs styles; a new or deleted one changes the index too.
        WatchRule(frontend, "*.scss", ("styles",), structure_tasks=("index",)),
        WatchRule(frontend, "*.js", ("scripts-watch",)),
        WatchRule(frontend, "*.html", ("angular-templates",)),
        WatchRule(config.BACKEND_SRC_DIR, "*.go", ("spawn-backend",), reload=False),
    ]
