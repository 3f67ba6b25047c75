"""Task-Scheduler: Gejitterte, sich selbst neu planende URL-Besuche.

Nutzt APScheduler 3.x (AsyncIOScheduler) als Timer-Substrat. Jeder Task
bildet eine eigene Kette aus One-Shot-Jobs (DateTrigger): Erst wenn eine
Ausführung abgeschlossen und ihr Ergebnis erfasst ist, wird der nächste
Timer gesetzt. Ausführungsdauer verschiebt so nur das jeweils laufende
Intervall, und ein hängender Besuch blockiert nur die eigene Kette.

Zeitplan pro Task:
  1. Initiale Verzögerung: stabiler String-Hash der Task-ID modulo
     Intervall -- gleiche ID, gleiche Phase über Neustarts hinweg.
  2. Danach: Intervall + zufälliger Jitter aus [0, randomRange).
  3. Fehler beim Besuch beenden die Kette nie.
"""

from __future__ import annotations

import contextlib
import itertools
import random
from collections.abc import Callable, Coroutine, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from fangwen.errors import ExecutionFailure, InvalidTaskConfig, UnknownTask
from fangwen.invoker import TargetInvoker
from fangwen.models import (
    DEFAULT_TIMEOUT_MILLIS,
    RECOMMENDED_MIN_INTERVAL_SECONDS,
    TaskDefinition,
    TaskRuntimeState,
    TaskStatus,
    VisitOutcome,
    VisitRequest,
)
from fangwen.utils.logging import get_logger

log = get_logger(__name__)

SystemCallback = Callable[[], Coroutine[Any, Any, Any]]


def _string_hash(value: str) -> int:
    """32-Bit-String-Hash (``h = h*31 + c``) über UTF-16-Code-Units, signed."""
    data = value.encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def initial_delay_ms(task_id: str, interval_seconds: float) -> int:
    """Deterministische Startverzögerung in ``[0, interval_seconds*1000)``.

    Verteilt Tasks mit gleichem Intervall über die Periode, statt sie
    gleichzeitig feuern zu lassen.
    """
    period = max(1, int(interval_seconds * 1000))
    return abs(_string_hash(task_id)) % period


class TaskScheduler:
    """Verwaltet Task-Definitionen, deren Laufzeitzustand und Timer.

    Attributes:
        running: Ob der Scheduler aktiv ist (``start()`` ohne folgendes ``stop()``).
    """

    def __init__(
        self,
        invoker: TargetInvoker | None = None,
        *,
        default_timeout_millis: int = DEFAULT_TIMEOUT_MILLIS,
        scheduler: AsyncIOScheduler | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialisiert den TaskScheduler.

        Args:
            invoker: Führt die einzelnen Besuche aus. ``None`` = eigener
                TargetInvoker, der bei ``shutdown()`` geschlossen wird.
            default_timeout_millis: Timeout für Tasks ohne eigenen Wert.
            scheduler: Optionaler APScheduler; sonst lazy erzeugt.
            rng: Zufallsquelle für Jitter (Tests: mit Seed).
            clock: Liefert die aktuelle Zeit (UTC, timezone-aware).
        """
        self._owns_invoker = invoker is None
        self._invoker = invoker or TargetInvoker(default_timeout_millis=default_timeout_millis)
        self._default_timeout_millis = default_timeout_millis
        self._scheduler = scheduler
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._definitions: dict[str, TaskDefinition] = {}
        self._states: dict[str, TaskRuntimeState] = {}
        self._system_jobs: dict[str, str] = {}  # name → scheduler_job_id
        self._arm_counter = itertools.count(1)
        self.running = False

    # ------------------------------------------------------------------
    # Lebenszyklus
    # ------------------------------------------------------------------

    def _get_scheduler(self) -> AsyncIOScheduler:
        if self._scheduler is None:
            self._scheduler = AsyncIOScheduler(timezone=UTC)
        return self._scheduler

    def start(self) -> None:
        """Markiert den Scheduler als aktiv. Setzt selbst keine Timer."""
        scheduler = self._get_scheduler()
        if not scheduler.running:
            scheduler.start()
        self.running = True
        log.info(
            "scheduler_started",
            tasks=len(self._definitions),
            active=sum(1 for s in self._states.values() if s.active),
        )

    def stop(self) -> None:
        """Bricht alle Task-Timer ab. Definitionen bleiben erhalten. Idempotent."""
        for state in self._states.values():
            self._cancel_timer(state)
        self.running = False
        log.info("scheduler_stopped", tasks=len(self._definitions))

    async def shutdown(self) -> None:
        """Stoppt alles inklusive APScheduler und (eigenem) Invoker."""
        self.stop()
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self._system_jobs.clear()
        if self._owns_invoker:
            await self._invoker.aclose()

    # ------------------------------------------------------------------
    # Task-Verwaltung
    # ------------------------------------------------------------------

    def add_task(self, definition: TaskDefinition | dict[str, Any]) -> TaskDefinition:
        """Fügt einen Task hinzu oder ersetzt einen mit gleicher ID.

        Ein bestehender Timer der ID wird vor dem Setzen eines neuen
        abgebrochen -- nie zwei lebende Timer pro ID.

        Returns:
            Die gespeicherte TaskDefinition.

        Raises:
            InvalidTaskConfig: Pflichtfeld fehlt oder ist ungültig.
        """
        task = TaskDefinition.parse(definition)

        if task.interval_seconds < RECOMMENDED_MIN_INTERVAL_SECONDS:
            log.warning(
                "task_interval_short",
                task_id=task.id,
                interval=task.interval_seconds,
                recommended=RECOMMENDED_MIN_INTERVAL_SECONDS,
            )

        state = self._states.get(task.id)
        if state is None:
            state = TaskRuntimeState(task_id=task.id)
            self._states[task.id] = state
        else:
            self._cancel_timer(state)

        self._definitions[task.id] = task

        if task.enabled:
            self._arm(state, initial_delay_ms(task.id, task.interval_seconds))

        log.info(
            "task_added",
            task_id=task.id,
            url=task.url,
            interval=task.interval_seconds,
            random_range=task.random_range_seconds,
            enabled=task.enabled,
        )
        return task

    def remove_task(self, task_id: str) -> bool:
        """Entfernt einen Task samt Timer.

        ``last_execution_at`` bleibt für ein späteres Wieder-Hinzufügen erhalten.

        Returns:
            True wenn der Task existierte.
        """
        task = self._definitions.pop(task_id, None)
        state = self._states.get(task_id)
        if state is not None:
            self._cancel_timer(state)
        if task is None:
            return False
        log.info("task_removed", task_id=task_id)
        return True

    def enable_task(self, task_id: str) -> bool:
        """Aktiviert einen Task und setzt seinen Timer.

        Returns:
            True wenn der Task scharf geschaltet wurde, False wenn er
            bereits aktiv war (kein Fehler).

        Raises:
            UnknownTask: ID ist nicht registriert.
        """
        task = self._definitions.get(task_id)
        if task is None:
            log.warning("task_unknown", task_id=task_id, action="enable")
            raise UnknownTask(task_id)

        state = self._states[task_id]
        if state.active:
            log.warning("task_already_active", task_id=task_id)
            return False

        task = task.model_copy(update={"enabled": True})
        self._definitions[task_id] = task
        self._arm(state, initial_delay_ms(task.id, task.interval_seconds))
        log.info("task_enabled", task_id=task_id)
        return True

    def disable_task(self, task_id: str) -> None:
        """Deaktiviert einen Task und bricht seinen Timer ab. Idempotent.

        Ein gerade laufender Besuch wird nicht unterbrochen; er aktualisiert
        noch ``last_execution_at``, setzt aber keinen neuen Timer.

        Raises:
            UnknownTask: ID ist nicht registriert.
        """
        task = self._definitions.get(task_id)
        if task is None:
            log.warning("task_unknown", task_id=task_id, action="disable")
            raise UnknownTask(task_id)

        state = self._states[task_id]
        was_active = self._cancel_timer(state)
        self._definitions[task_id] = task.model_copy(update={"enabled": False})

        if was_active:
            log.info("task_disabled", task_id=task_id)
        else:
            log.warning("task_not_active", task_id=task_id)

    def reload(self, definitions: Iterable[TaskDefinition | dict[str, Any]]) -> int:
        """Ersetzt den gesamten Task-Bestand (Reload-Flow).

        ``stop()``, alle Definitionen neu hinzufügen, ``start()``. Tasks, die
        nicht mehr vorkommen, werden entfernt; ungültige Einträge geloggt
        und übersprungen.

        Returns:
            Anzahl erfolgreich hinzugefügter Tasks.
        """
        self.stop()

        added: set[str] = set()
        try:
            for definition in definitions:
                try:
                    task = self.add_task(definition)
                except InvalidTaskConfig as exc:
                    log.error("task_add_failed", error=str(exc), **exc.details)
                    continue
                added.add(task.id)

            for stale_id in set(self._definitions) - added:
                self.remove_task(stale_id)
        finally:
            self.start()
        log.info(
            "scheduler_reloaded",
            tasks=len(added),
            enabled=sum(1 for t in self._definitions.values() if t.enabled),
        )
        return len(added)

    @property
    def task_ids(self) -> list[str]:
        return list(self._definitions)

    def get_task(self, task_id: str) -> TaskDefinition | None:
        return self._definitions.get(task_id)

    def get_runtime_state(self, task_id: str) -> TaskRuntimeState | None:
        return self._states.get(task_id)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_tasks_status(self) -> dict[str, TaskStatus]:
        """Status aller Tasks.

        ``estimated_next_execution_at`` wird bei jeder Abfrage mit frischem
        Jitter berechnet und ist nur ein Richtwert; der echte Feuerzeitpunkt
        steht in ``scheduled_at``.
        """
        status: dict[str, TaskStatus] = {}
        for task_id, task in self._definitions.items():
            state = self._states[task_id]
            status[task_id] = TaskStatus(
                url=task.url,
                interval_seconds=task.interval_seconds,
                random_range_seconds=task.random_range_seconds,
                enabled=task.enabled,
                active=state.active,
                last_execution_at=state.last_execution_at,
                estimated_next_execution_at=self._estimate_next_execution(task, state),
                scheduled_at=state.next_run_at if state.active else None,
                last_success=state.last_outcome.success if state.last_outcome else None,
                run_count=state.run_count,
                failure_count=state.failure_count,
            )
        return status

    def _estimate_next_execution(self, task: TaskDefinition, state: TaskRuntimeState) -> datetime | None:
        if state.last_execution_at is None:
            return None
        return state.last_execution_at + timedelta(milliseconds=self._next_delay_ms(task))

    # ------------------------------------------------------------------
    # Timer-Kette
    # ------------------------------------------------------------------

    def _next_delay_ms(self, task: TaskDefinition) -> int:
        jitter = int(self._rng.random() * task.random_range_millis) if task.random_range_millis > 0 else 0
        return task.interval_millis + jitter

    def _arm(self, state: TaskRuntimeState, delay_ms: int) -> None:
        """Setzt einen One-Shot-Timer und ersetzt den bisherigen Handle."""
        self._cancel_timer(state)

        job_id = f"fangwen-task-{state.task_id}-{next(self._arm_counter)}"
        run_at = self._clock() + timedelta(milliseconds=delay_ms)
        self._get_scheduler().add_job(
            self._fire,
            trigger=DateTrigger(run_date=run_at),
            args=[state.task_id, job_id],
            id=job_id,
            name=state.task_id,
            misfire_grace_time=None,
            coalesce=True,
        )
        state.job_id = job_id
        state.next_run_at = run_at
        log.debug("task_scheduled", task_id=state.task_id, delay_ms=delay_ms, run_at=run_at.isoformat())

    def _cancel_timer(self, state: TaskRuntimeState) -> bool:
        """Bricht den Timer ab. Returns True wenn einer gesetzt war."""
        job_id = state.job_id
        state.job_id = None
        state.next_run_at = None
        if job_id is None:
            return False
        if self._scheduler is not None:
            # Bereits gefeuerte DateTrigger-Jobs sind schon entfernt
            with contextlib.suppress(JobLookupError):
                self._scheduler.remove_job(job_id)
        return True

    async def _fire(self, task_id: str, job_id: str) -> None:
        """Timer-Callback: ausführen, erfassen, nächsten Timer setzen."""
        state = self._states.get(task_id)
        task = self._definitions.get(task_id)
        if state is None or task is None or state.job_id != job_id:
            log.debug("task_fire_stale", task_id=task_id, job_id=job_id)
            return

        outcome = await self._execute(task)
        self._record(state, outcome)

        # Deaktiviert, ersetzt oder gestoppt während des Besuchs
        if state.job_id != job_id:
            log.info("task_chain_ended", task_id=task_id)
            return

        self._arm(state, self._next_delay_ms(self._definitions.get(task_id, task)))

    async def _execute(self, task: TaskDefinition) -> VisitOutcome:
        log.info("task_executing", task_id=task.id)
        request = VisitRequest.from_task(task, default_timeout_millis=self._default_timeout_millis)
        try:
            return await self._invoker.visit(request)
        except Exception as exc:
            failure = ExecutionFailure(str(exc) or type(exc).__name__, details={"task_id": task.id})
            log.exception("task_execution_error", task_id=task.id, error_code=failure.error_code)
            return VisitOutcome(
                success=False,
                error_message=str(failure),
                error_code=failure.error_code,
            )

    def _record(self, state: TaskRuntimeState, outcome: VisitOutcome) -> None:
        # Auch bei Fehlschlag: nächster Versuch wartet ein volles Intervall
        state.last_execution_at = self._clock()
        state.last_outcome = outcome
        state.run_count += 1
        if not outcome.success:
            state.failure_count += 1
            log.warning(
                "task_execution_failed",
                task_id=state.task_id,
                error=outcome.error_message,
                code=outcome.error_code,
                status_code=outcome.status_code,
            )
        else:
            log.info(
                "task_execution_completed",
                task_id=state.task_id,
                status_code=outcome.status_code,
                duration_ms=outcome.duration_millis,
            )

    # ------------------------------------------------------------------
    # Öffentliche API für Runtime-Management
    # ------------------------------------------------------------------

    async def trigger_now(self, task_id: str) -> VisitOutcome:
        """Führt einen Task sofort einmal aus, ohne seine Kette zu verändern.

        Raises:
            UnknownTask: ID ist nicht registriert.
        """
        task = self._definitions.get(task_id)
        if task is None:
            raise UnknownTask(task_id)
        outcome = await self._execute(task)
        self._record(self._states[task_id], outcome)
        return outcome

    def add_system_job(self, name: str, interval_seconds: float, callback: SystemCallback) -> str:
        """Registriert einen periodischen Housekeeping-Callback.

        Args:
            name: Eindeutiger Job-Name.
            interval_seconds: Abstand zwischen zwei Läufen.
            callback: Async-Callable ohne Argumente.

        Returns:
            ID des geplanten Jobs.
        """
        job_id = f"fangwen-system-{name}"
        self._get_scheduler().add_job(
            callback,
            trigger=IntervalTrigger(seconds=interval_seconds, timezone=UTC),
            id=job_id,
            name=name,
            replace_existing=True,
            coalesce=True,
        )
        self._system_jobs[name] = job_id
        log.info("system_job_scheduled", name=name, interval=interval_seconds)
        return job_id
