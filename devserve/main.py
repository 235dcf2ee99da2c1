import sys
import signal
import logging
import argparse
import threading
from typing import List, Optional

import setproctitle
from dotenv import load_dotenv

from devserve.config import ConfigurationError, effective_settings as config
from devserve.log import setup_logging
from devserve.tasks import DevWorkflow, TaskCycleError, TaskError, UnknownTaskError
from devserve.web import WebServerError

log = logging.getLogger("devserve")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devserve",
        description="Runs development workflow tasks: backend supervision, frontend serving and rebuilds.",
    )
    parser.add_argument("task", help="Task to run (e.g. serve, serve:nowatch, serve:prod, kill-backend), or 'list'.")
    parser.add_argument("--verbose", action="store_true", help="Show DEBUG log output on the console.")
    parser.add_argument("--https", action="store_true", help="Serve the frontend over HTTPS.")
    parser.add_argument(
        "--kill-timeout", type=float, default=None, metavar="SECONDS",
        help="Kill the backend if it has not exited this long after SIGTERM.",
    )
    parser.add_argument(
        "--env-file", default=None, metavar="PATH",
        help="Load settings from this .env file, overriding the environment.",
    )
    return parser


def print_tasks(workflow: DevWorkflow) -> None:
    """Prints the registered tasks and their dependencies."""
    print("\nAvailable tasks:")
    for name in sorted(workflow.graph.tasks):
        task = workflow.graph.tasks[name]
        deps = f" [{', '.join(task.dependencies)}]" if task.dependencies else ""
        print(f"  {name:<26} - {task.description}{deps}")
    print()


def main(argv: Optional[List[str]] = None) -> int:
    """The main entry point for the command-line tool."""
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    if args.env_file:
        if not load_dotenv(args.env_file, override=True):
            log.error(f"No settings loaded from '{args.env_file}'.")
            return 2
        config.reload()
        setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    if args.https:
        config.override(SERVE_HTTPS=True)
    if args.kill_timeout is not None:
        config.override(BACKEND_KILL_TIMEOUT=args.kill_timeout)

    workflow = DevWorkflow()
    if args.task == "list":
        print_tasks(workflow)
        return 0
    if args.task not in workflow.graph:
        log.error(f"Unknown task: '{args.task}'. Use 'devserve list' for a list of tasks.")
        return 2

    setproctitle.setproctitle(f"devserve - {args.task}")
    stop_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop_event.set())

    try:
        workflow.graph.run(args.task)
        if workflow.has_running_services():
            log.info("Running. Press Ctrl+C to stop.")
            workflow.wait_until_done(stop_event)
    except KeyboardInterrupt:
        log.warning("Interrupted by user.")
    except (TaskError, UnknownTaskError, TaskCycleError, ConfigurationError, WebServerError) as e:
        log.critical(f"'{args.task}' failed: {e}")
        return 1
    finally:
        log.info("Shutting down...")
        workflow.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
