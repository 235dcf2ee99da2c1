import time
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

log = logging.getLogger(__name__)

TaskAction = Callable[[], None]


class UnknownTaskError(KeyError):
    """Raised when a task, or one of its dependencies, is not registered."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else super().__str__()


class TaskCycleError(RuntimeError):
    """Raised when task dependencies form a cycle."""


class TaskError(RuntimeError):
    """Wraps an exception raised by a task's action, naming the task."""

    def __init__(self, task_name: str, cause: BaseException) -> None:
        super().__init__(f"Task '{task_name}' failed: {cause}")
        self.task_name = task_name
        self.cause = cause


@dataclass(frozen=True)
class Task:
    """A named node in the task graph."""
    name: str
    dependencies: Tuple[str, ...] = ()
    action: Optional[TaskAction] = None
    description: str = ""


class TaskGraph:
    """
    An explicit directed acyclic graph of named tasks.

    Running a task first runs its dependencies, depth-first and in declared
    order, and each task runs at most once per run. Runs are serialized: a run
    triggered from the file watcher waits for any run in progress.
    """

    def __init__(self) -> None:
        self.tasks: Dict[str, Task] = {}
        self._lock = threading.RLock()

    def add(self, name: str, dependencies: Iterable[str] = (), action: Optional[TaskAction] = None,
            description: str = "") -> Task:
        """Registers a task, replacing any previous task with the same name."""
        task = Task(name=name, dependencies=tuple(dependencies), action=action, description=description)
        if name in self.tasks:
            log.debug(f"Replacing task '{name}'.")
        self.tasks[name] = task
        return task

    def __contains__(self, name: str) -> bool:
        return name in self.tasks

    def get(self, name: str) -> Task:
        try:
            return self.tasks[name]
        except KeyError:
            raise UnknownTaskError(f"Task '{name}' is not registered.") from None

    def resolve(self, name: str) -> List[str]:
        """
        Returns the execution order for a task: dependencies first, each task once.

        :raises UnknownTaskError: If the task or a dependency is not registered.
        :raises TaskCycleError: If the dependencies form a cycle.
        """
        order: List[str] = []
        done = set()
        path: List[str] = []

        def visit(current: str) -> None:
            if current in done:
                return
            if current in path:
                cycle = " -> ".join(path[path.index(current):] + [current])
                raise TaskCycleError(f"Task dependency cycle: {cycle}")
            task = self.get(current)
            path.append(current)
            for dependency in task.dependencies:
                if dependency not in self.tasks:
                    raise UnknownTaskError(f"Task '{current}' depends on unknown task '{dependency}'.")
                visit(dependency)
            path.pop()
            done.add(current)
            order.append(current)

        visit(name)
        return order

    def run(self, name: str) -> List[str]:
        """
        Runs a task and everything it depends on.

        :return list: The names of the tasks that ran, in order.
        :raises TaskError: If any action raises; later tasks are not run.
        """
        with self._lock:
            order = self.resolve(name)
            log.debug(f"Execution order for '{name}': {', '.join(order)}")
            for task_name in order:
                self._run_one(self.tasks[task_name])
            return order

    def _run_one(self, task: Task) -> None:
        if task.action is None:
            return
        log.info(f"Starting '{task.name}'...")
        start_time = time.monotonic()
        try:
            task.action()
        except Exception as e:
            log.error(f"'{task.name}' errored after {time.monotonic() - start_time:.2f}s: {e}")
            raise TaskError(task.name, e) from e
        log.info(f"Finished '{task.name}' after {time.monotonic() - start_time:.2f}s")
