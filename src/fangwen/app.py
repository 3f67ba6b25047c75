"""Fangwen · Application runtime.

Verbindet TargetStore, TargetInvoker, TaskScheduler und TargetFileWatcher:

  - Start: Ziele laden, Tasks hinzufügen, Scheduler starten
  - Reload: stop() → alle Ziele neu hinzufügen → start()
  - Stündlicher Status-Report im Log
  - Sauberes Herunterfahren
"""

from __future__ import annotations

import time
from typing import Any

from fangwen import USER_AGENT
from fangwen.config import FangwenConfig
from fangwen.errors import ConfigError, UnknownTask
from fangwen.invoker import TargetInvoker
from fangwen.models import TaskDefinition, TaskStatus
from fangwen.scheduler.engine import TaskScheduler
from fangwen.scheduler.store import TargetStore
from fangwen.scheduler.watcher import TargetFileWatcher
from fangwen.utils.logging import get_logger

log = get_logger(__name__)


class FangwenApp:
    """Laufzeit-Container für alle Fangwen-Komponenten.

    Verwendung::

        app = FangwenApp(config)
        await app.initialize()
        ...
        await app.shutdown()
    """

    def __init__(
        self,
        config: FangwenConfig,
        *,
        invoker: TargetInvoker | None = None,
        scheduler: TaskScheduler | None = None,
    ) -> None:
        self.config = config
        self.store = TargetStore(config.targets_path)
        self.invoker = invoker or TargetInvoker(
            user_agent=config.invoker.user_agent or USER_AGENT,
            default_timeout_millis=config.invoker.timeout_millis,
        )
        self.scheduler = scheduler or TaskScheduler(
            self.invoker,
            default_timeout_millis=config.invoker.timeout_millis,
        )
        self.watcher: TargetFileWatcher | None = None
        self.is_running = False
        self._started_at = time.monotonic()

    @property
    def uptime_seconds(self) -> float:
        return time.monotonic() - self._started_at

    async def initialize(self) -> None:
        """Lädt alle Ziele und startet Scheduler, Status-Report und Watcher.

        Raises:
            ConfigError: Ziel-Datei fehlt oder ist nicht parsbar.
        """
        log.info("app_initializing", targets_file=str(self.store.path))

        tasks = self.store.get_task_definitions(force=True)
        if not tasks:
            log.warning("no_valid_targets", targets_file=str(self.store.path))

        for task in tasks:
            self.scheduler.add_task(task)

        self.scheduler.start()

        report_minutes = self.config.scheduler.status_report_minutes
        if report_minutes > 0:
            self.scheduler.add_system_job("status_report", report_minutes * 60, self.report_status)

        if self.config.scheduler.watch_targets:
            self.watcher = TargetFileWatcher(
                self.store.path,
                self._on_targets_changed,
                debounce_seconds=self.config.scheduler.reload_debounce_seconds,
            )
            self.watcher.start()

        self.is_running = True
        log.info(
            "app_initialized",
            total_tasks=len(tasks),
            enabled_tasks=sum(1 for t in tasks if t.enabled),
            api_port=self.config.api.port,
        )

    async def reload_targets(self) -> int:
        """Lädt die Ziel-Datei neu und ersetzt den kompletten Task-Bestand.

        Returns:
            Anzahl aktiver Task-Definitionen nach dem Reload.

        Raises:
            ConfigError: Datei nicht lesbar -- der laufende Zeitplan bleibt unverändert.
        """
        log.info("targets_reloading")
        tasks = self.store.get_task_definitions(force=True)
        count = self.scheduler.reload(tasks)
        log.info(
            "targets_reloaded",
            total_tasks=count,
            enabled_tasks=sum(1 for t in tasks if t.enabled),
        )
        return count

    async def _on_targets_changed(self) -> None:
        if not self.store.has_changed():
            return
        try:
            await self.reload_targets()
        except ConfigError as exc:
            log.error("targets_reload_failed", error=str(exc), **exc.details)

    async def save_targets(self, targets: list[dict[str, Any]]) -> list[TaskDefinition]:
        """Speichert eine neue Ziel-Liste und lädt den Scheduler neu.

        Raises:
            InvalidTaskConfig: Mindestens ein Eintrag ist ungültig (nichts gespeichert).
        """
        tasks = self.store.save_targets(targets)
        await self.reload_targets()
        return tasks

    def set_task_enabled(self, task_id: str, enabled: bool) -> None:
        """Persistiert das enabled-Flag und schaltet den Task im Scheduler.

        Die Datei wird erst geschrieben, wenn der Task im Scheduler existiert.

        Raises:
            UnknownTask: Ziel fehlt im Scheduler oder in der Datei (nichts geändert).
        """
        if self.scheduler.get_task(task_id) is None or not self.store.set_enabled(task_id, enabled):
            raise UnknownTask(task_id)
        if enabled:
            self.scheduler.enable_task(task_id)
        else:
            self.scheduler.disable_task(task_id)

    def tasks_status(self) -> dict[str, TaskStatus]:
        return self.scheduler.get_tasks_status()

    async def report_status(self) -> None:
        """Schreibt den Status aller Tasks ins Log."""
        if not self.is_running:
            return
        status = {task_id: s.model_dump(mode="json") for task_id, s in self.tasks_status().items()}
        log.info("task_status_report", tasks=status)

    async def shutdown(self) -> None:
        """Stoppt Watcher, Scheduler und HTTP-Client."""
        self.is_running = False
        if self.watcher is not None:
            self.watcher.stop()
            self.watcher = None
        await self.scheduler.shutdown()
        await self.invoker.aclose()
        log.info("app_stopped")
