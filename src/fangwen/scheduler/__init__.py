"""Fangwen scheduler module -- Zeitgesteuerte URL-Besuche.

Enthält den TaskScheduler (Timer-Ketten pro Ziel), den TargetStore
(Ziel-Definitionen aus JSON/YAML) und den TargetFileWatcher (Hot-Reload).
"""

from fangwen.scheduler.engine import TaskScheduler, initial_delay_ms
from fangwen.scheduler.store import TargetStore
from fangwen.scheduler.watcher import TargetFileWatcher

__all__ = ["TargetFileWatcher", "TargetStore", "TaskScheduler", "initial_delay_ms"]
