"""
File watching for devserve: rules mapping source changes to rebuild tasks,
and the watchdog handler that runs them.
"""
from .rules import WatchRule, default_rules
from .handler import FileWatcher, RebuildEventHandler

__all__ = ['WatchRule', 'default_rules', 'FileWatcher', 'RebuildEventHandler']
