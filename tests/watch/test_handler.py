"""Tests for the rebuild-on-change file watcher."""

import threading
from pathlib import Path
from typing import List

import pytest
from watchdog.events import (
    DirModifiedEvent, FileCreatedEvent, FileDeletedEvent, FileModifiedEvent, FileMovedEvent,
)

from devserve.watch import FileWatcher, RebuildEventHandler
from devserve.watch.rules import WatchRule, default_rules


class Recorder:
    """Collects the tasks and reloads triggered by the handler."""

    def __init__(self, failing: tuple = ()) -> None:
        self.tasks: List[str] = []
        self.reloads = 0
        self.failing = failing

    def run_task(self, name: str) -> None:
        self.tasks.append(name)
        if name in self.failing:
            raise RuntimeError(f"{name} broke")

    def on_reload(self) -> None:
        self.reloads += 1


@pytest.fixture
def frontend(project_dir: Path) -> Path:
    directory = project_dir / "src" / "app" / "frontend"
    directory.mkdir(parents=True)
    return directory


def make_handler(recorder: Recorder, debounce_interval: float = 0.5) -> RebuildEventHandler:
    return RebuildEventHandler(default_rules(), recorder.run_task, recorder.on_reload, debounce_interval)


class TestRebuildRules:
    """Test which tasks each kind of change triggers."""

    def test_stylesheet_modified(self, frontend: Path) -> None:
        recorder = Recorder()

        make_handler(recorder).on_any_event(FileModifiedEvent(str(frontend / "app.scss")))

        assert recorder.tasks == ["styles"]
        assert recorder.reloads == 1

    @pytest.mark.parametrize("event_class", [FileCreatedEvent, FileDeletedEvent])
    def test_stylesheet_added_or_removed(self, frontend: Path, event_class) -> None:
        """Test that new or deleted stylesheets rebuild the index instead."""
        recorder = Recorder()

        make_handler(recorder).on_any_event(event_class(str(frontend / "chrome" / "nav.scss")))

        assert recorder.tasks == ["index"]

    def test_script_modified(self, frontend: Path) -> None:
        recorder = Recorder()

        make_handler(recorder).on_any_event(FileModifiedEvent(str(frontend / "deep" / "ctrl.js")))

        assert recorder.tasks == ["scripts-watch"]

    def test_index_page_runs_both_tasks(self, frontend: Path) -> None:
        """Test that index.html matches its own rule and the template rule, without duplicates."""
        recorder = Recorder()

        make_handler(recorder).on_any_event(FileModifiedEvent(str(frontend / "index.html")))

        assert recorder.tasks == ["index", "angular-templates"]
        assert recorder.reloads == 1

    def test_nested_index_page_is_a_template(self, frontend: Path) -> None:
        recorder = Recorder()

        make_handler(recorder).on_any_event(FileModifiedEvent(str(frontend / "pod" / "index.html")))

        assert recorder.tasks == ["angular-templates"]

    def test_bower_json(self, project_dir: Path) -> None:
        recorder = Recorder()

        make_handler(recorder).on_any_event(FileModifiedEvent(str(project_dir / "bower.json")))

        assert recorder.tasks == ["index"]

    def test_backend_source_restarts_without_reload(self, project_dir: Path) -> None:
        """Test that Go changes respawn the backend but do not reload browsers."""
        recorder = Recorder()
        source = project_dir / "src" / "app" / "backend" / "handler" / "apihandler.go"

        make_handler(recorder).on_any_event(FileModifiedEvent(str(source)))

        assert recorder.tasks == ["spawn-backend"]
        assert recorder.reloads == 0

    def test_move_into_watched_tree(self, frontend: Path, project_dir: Path) -> None:
        """Test that the destination of a move is matched too."""
        recorder = Recorder()

        event = FileMovedEvent(str(project_dir / "scratch.js"), str(frontend / "service.js"))
        make_handler(recorder).on_any_event(event)

        assert recorder.tasks == ["scripts-watch"]

    @pytest.mark.parametrize("name", ["README.md", "app.scss.swp", "notes.txt"])
    def test_unrelated_files_ignored(self, frontend: Path, name: str) -> None:
        recorder = Recorder()

        make_handler(recorder).on_any_event(FileModifiedEvent(str(frontend / name)))

        assert recorder.tasks == []
        assert recorder.reloads == 0

    def test_directory_events_ignored(self, frontend: Path) -> None:
        recorder = Recorder()

        make_handler(recorder).on_any_event(DirModifiedEvent(str(frontend)))

        assert recorder.tasks == []

    def test_files_outside_rules_ignored(self, project_dir: Path) -> None:
        recorder = Recorder()

        make_handler(recorder).on_any_event(FileModifiedEvent(str(project_dir / "dist" / "app.js")))

        assert recorder.tasks == []


class TestRebuildHandling:
    """Test debouncing and failure handling."""

    def test_repeated_events_debounced(self, frontend: Path) -> None:
        recorder = Recorder()
        handler = make_handler(recorder, debounce_interval=60)
        event = FileModifiedEvent(str(frontend / "app.scss"))

        handler.on_any_event(event)
        handler.on_any_event(event)

        assert recorder.tasks == ["styles"]

    def test_debounce_is_per_file(self, frontend: Path) -> None:
        recorder = Recorder()
        handler = make_handler(recorder, debounce_interval=60)

        handler.on_any_event(FileModifiedEvent(str(frontend / "a.scss")))
        handler.on_any_event(FileModifiedEvent(str(frontend / "b.scss")))

        assert recorder.tasks == ["styles", "styles"]

    def test_failed_task_skips_reload(self, frontend: Path, caplog) -> None:
        """Test that a failing rebuild is logged, later tasks still run, and browsers keep the old page."""
        recorder = Recorder(failing=("index",))

        make_handler(recorder).on_any_event(FileModifiedEvent(str(frontend / "index.html")))

        assert recorder.tasks == ["index", "angular-templates"]
        assert recorder.reloads == 0
        assert "index broke" in caplog.text

    def test_no_reload_callback(self, frontend: Path) -> None:
        recorder = Recorder()
        handler = RebuildEventHandler(default_rules(), recorder.run_task)

        handler.on_any_event(FileModifiedEvent(str(frontend / "app.js")))

        assert recorder.tasks == ["scripts-watch"]

    def test_plan(self, frontend: Path) -> None:
        handler = make_handler(Recorder())

        assert handler.plan(FileCreatedEvent(str(frontend / "x.scss"))) == (["index"], True)


class TestFileWatcher:
    """Test the observer wrapper."""

    def test_watched_directories(self, project_dir: Path) -> None:
        """Test that a directory is watched recursively if any of its rules needs it."""
        watcher = FileWatcher(make_handler(Recorder()))
        app_dir = (project_dir / "src" / "app").resolve()

        assert watcher.watched_directories() == {
            app_dir / "frontend": True,
            project_dir.resolve(): False,
            app_dir / "backend": True,
        }

    def test_start_and_stop_with_missing_directories(self, project_dir: Path) -> None:
        watcher = FileWatcher(make_handler(Recorder()))

        watcher.start()
        try:
            assert watcher.is_alive
        finally:
            watcher.stop()

        assert not watcher.is_alive
        watcher.stop()

    def test_file_change_triggers_task(self, frontend: Path) -> None:
        """Test the full path from a real file write to a task run."""
        triggered = threading.Event()
        ran: List[str] = []

        def run_task(name: str) -> None:
            ran.append(name)
            triggered.set()

        rules = [WatchRule(frontend, "*.js", ("scripts-watch",))]
        watcher = FileWatcher(RebuildEventHandler(rules, run_task))
        watcher.start()
        try:
            (frontend / "main.js").write_text("console.log(1);")
            assert triggered.wait(10)
        finally:
            watcher.stop()

        assert ran[0] == "scripts-watch"
