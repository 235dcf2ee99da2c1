"""
The tasks package.

An explicit task graph with a topological runner, and the workflow that
registers the serve, spawn and watch tasks on it.
"""
from .graph import Task, TaskCycleError, TaskError, TaskGraph, UnknownTaskError
from .workflow import DevWorkflow

__all__ = ['Task', 'TaskCycleError', 'TaskError', 'TaskGraph', 'UnknownTaskError', 'DevWorkflow']
