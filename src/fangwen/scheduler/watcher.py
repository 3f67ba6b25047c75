"""Hot-Reload der Ziel-Datei.

Nutzt watchdog für Filesystem-Events. Events kommen aus dem Observer-Thread
und werden per ``call_soon_threadsafe`` in die Event-Loop übergeben, dort
entprellt und als Reload-Callback ausgeführt.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from fangwen.utils.logging import get_logger

log = get_logger(__name__)

ReloadCallback = Callable[[], Coroutine[Any, Any, Any]]


class _TargetFileHandler(FileSystemEventHandler):
    """Leitet Änderungen an genau einer Datei an den Watcher weiter."""

    def __init__(self, watcher: TargetFileWatcher) -> None:
        self._watcher = watcher

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify(event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Editoren speichern oft über temp-Datei + rename
        if not event.is_directory:
            self._watcher.notify(event.dest_path)


class TargetFileWatcher:
    """Überwacht die Ziel-Datei und löst bei Änderungen einen Reload aus."""

    def __init__(
        self,
        path: str | Path,
        on_change: ReloadCallback,
        *,
        debounce_seconds: float = 1.0,
    ) -> None:
        self._path = Path(path).resolve()
        self._on_change = on_change
        self._debounce = debounce_seconds
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: Any = None
        self._pending: asyncio.TimerHandle | None = None
        self._reload_task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        """Prüft ob der Watcher aktiv ist."""
        return self._observer is not None

    def start(self) -> None:
        """Startet den Observer. Muss innerhalb der Event-Loop aufgerufen werden."""
        if self._observer is not None:
            return
        self._loop = asyncio.get_running_loop()

        observer = Observer()
        observer.schedule(_TargetFileHandler(self), str(self._path.parent), recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer
        log.info("target_watcher_started", path=str(self._path))

    def stop(self) -> None:
        """Stoppt den Observer und verwirft ausstehende Reloads."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None
            log.info("target_watcher_stopped", path=str(self._path))
        self._loop = None

    def notify(self, src_path: str | bytes) -> None:
        """Thread-sicherer Einstieg für Filesystem-Events."""
        if isinstance(src_path, bytes):
            src_path = src_path.decode()
        if Path(src_path).resolve() != self._path:
            return
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._schedule_reload)

    def _schedule_reload(self) -> None:
        if self._loop is None or self._loop.is_closed():
            return
        if self._pending is not None:
            self._pending.cancel()
        self._pending = self._loop.call_later(self._debounce, self._start_reload)

    def _start_reload(self) -> None:
        self._pending = None
        if self._loop is None or self._loop.is_closed():
            return
        self._reload_task = self._loop.create_task(self._run_reload())

    async def _run_reload(self) -> None:
        log.info("target_file_changed", path=str(self._path))
        try:
            await self._on_change()
        except Exception:
            log.exception("target_reload_failed", path=str(self._path))
