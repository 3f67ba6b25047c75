"""Control-API: HTTP-Endpunkte zur Steuerung des Schedulers.

Bearer-Token-Authentifizierung, JSON-basiert.

Endpunkte:
  GET  /api/health              → Health-Check (ohne Auth)
  GET  /api/tasks/status        → Status aller Tasks
  POST /api/tasks/{id}/toggle   → Task aktivieren/deaktivieren
  POST /api/tasks/{id}/trigger  → Task sofort einmal ausführen
  GET  /api/config/urls         → Ziel-Definitionen lesen
  POST /api/config/urls         → Ziel-Definitionen speichern + Reload
  POST /api/config/reload       → Ziel-Datei neu laden
  GET  /api/logs                → Letzte N Log-Zeilen
  DELETE /api/logs            → Log-Dateien leeren
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from fangwen import __version__
from fangwen.errors import ConfigError, InvalidTaskConfig, UnknownTask
from fangwen.models import TaskStatus, VisitOutcome
from fangwen.utils.logging import LOG_TYPES, clear_logs, get_logger, read_log_tail

if TYPE_CHECKING:
    from fangwen.app import FangwenApp

log = get_logger(__name__)

# ============================================================================
# API-Datenmodelle
# ============================================================================


class HealthResponse(BaseModel):
    """Health-Check-Antwort."""

    status: str = "ok"
    timestamp: str
    version: str = __version__
    uptime_seconds: float = 0.0
    tasks: int = 0


class TasksStatusResponse(BaseModel):
    tasks: dict[str, TaskStatus] = Field(default_factory=dict)


class ToggleRequest(BaseModel):
    """Neues enabled-Flag für einen Task."""

    enabled: bool


class ToggleResponse(BaseModel):
    success: bool = True
    task_id: str
    enabled: bool


class TargetsPayload(BaseModel):
    """Liste der Ziel-Definitionen im Format der Ziel-Datei."""

    urls: list[dict[str, Any]] = Field(default_factory=list)


class ReloadResponse(BaseModel):
    success: bool = True
    tasks: int


class LogsResponse(BaseModel):
    logs: list[str] = Field(default_factory=list)


class ClearLogsResponse(BaseModel):
    success: bool = True
    cleared: list[str] = Field(default_factory=list)


# ============================================================================
# Control-API
# ============================================================================


class ControlAPI:
    """REST-API via FastAPI für eine laufende FangwenApp.

    Authentifizierung via Bearer-Token aus ``config.api.api_token``.
    """

    def __init__(self, runtime: FangwenApp) -> None:
        self._runtime = runtime
        self._api_token = runtime.config.api.api_token
        self._cors_origins = runtime.config.api.cors_origins
        self._app: FastAPI | None = None

    def _create_app(self) -> FastAPI:
        """Erstellt die FastAPI-Applikation mit allen Routen."""
        runtime = self._runtime

        app = FastAPI(
            title="Fangwen Control API",
            version=__version__,
            description="Steuerung des Fangwen-Schedulers",
        )

        if self._cors_origins:
            app.add_middleware(
                CORSMiddleware,
                allow_origins=self._cors_origins,
                allow_credentials=True,
                allow_methods=["*"],
                allow_headers=["*"],
            )

        security = HTTPBearer(auto_error=False)

        async def verify_token(
            credentials: HTTPAuthorizationCredentials | None = Depends(security),  # noqa: B008
        ) -> None:
            if not self._api_token:
                raise HTTPException(status_code=503, detail="API-Token nicht konfiguriert")
            if not credentials or credentials.credentials != self._api_token:
                log.warning("api_unauthorized")
                raise HTTPException(status_code=401, detail="Ungültiger Token")

        @app.get("/api/health", response_model=HealthResponse)
        async def health() -> HealthResponse:
            return HealthResponse(
                status="ok" if runtime.is_running else "starting",
                timestamp=datetime.now(UTC).isoformat(),
                uptime_seconds=runtime.uptime_seconds,
                tasks=len(runtime.scheduler.task_ids),
            )

        @app.get(
            "/api/tasks/status",
            response_model=TasksStatusResponse,
            dependencies=[Depends(verify_token)],
        )
        async def tasks_status() -> TasksStatusResponse:
            return TasksStatusResponse(tasks=runtime.tasks_status())

        @app.post(
            "/api/tasks/{task_id}/toggle",
            response_model=ToggleResponse,
            dependencies=[Depends(verify_token)],
        )
        async def toggle_task(task_id: str, req: ToggleRequest) -> ToggleResponse:
            try:
                runtime.set_task_enabled(task_id, req.enabled)
            except UnknownTask as exc:
                raise HTTPException(status_code=404, detail=str(exc)) from exc
            except ConfigError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            return ToggleResponse(task_id=task_id, enabled=req.enabled)

        @app.post(
            "/api/tasks/{task_id}/trigger",
            response_model=VisitOutcome,
            dependencies=[Depends(verify_token)],
        )
        async def trigger_task(task_id: str) -> VisitOutcome:
            try:
                return await runtime.scheduler.trigger_now(task_id)
            except UnknownTask as exc:
                raise HTTPException(status_code=404, detail=str(exc)) from exc

        @app.get(
            "/api/config/urls",
            response_model=TargetsPayload,
            dependencies=[Depends(verify_token)],
        )
        async def get_targets() -> TargetsPayload:
            try:
                tasks = runtime.store.get_task_definitions()
            except ConfigError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            return TargetsPayload(urls=[task.to_config_dict() for task in tasks])

        @app.post(
            "/api/config/urls",
            response_model=ReloadResponse,
            dependencies=[Depends(verify_token)],
        )
        async def save_targets(req: TargetsPayload) -> ReloadResponse:
            try:
                tasks = await runtime.save_targets(req.urls)
            except (InvalidTaskConfig, ConfigError) as exc:
                log.warning("api_targets_rejected", error=str(exc))
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            return ReloadResponse(tasks=len(tasks))

        @app.post(
            "/api/config/reload",
            response_model=ReloadResponse,
            dependencies=[Depends(verify_token)],
        )
        async def reload_targets() -> ReloadResponse:
            try:
                count = await runtime.reload_targets()
            except ConfigError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            return ReloadResponse(tasks=count)

        @app.get(
            "/api/logs",
            response_model=LogsResponse,
            dependencies=[Depends(verify_token)],
        )
        async def get_logs(
            log_type: str = Query("combined", alias="type"),
            lines: int = Query(100, ge=1, le=5000),
        ) -> LogsResponse:
            if log_type not in LOG_TYPES:
                raise HTTPException(status_code=400, detail=f"Unbekannter Log-Typ: {log_type}")
            return LogsResponse(logs=read_log_tail(runtime.config.logs_dir, lines=lines, log_type=log_type))

        @app.delete(
            "/api/logs",
            response_model=ClearLogsResponse,
            dependencies=[Depends(verify_token)],
        )
        @app.delete(
            "/api/logs/clear",
            response_model=ClearLogsResponse,
            dependencies=[Depends(verify_token)],
        )
        async def delete_logs() -> ClearLogsResponse:
            cleared = clear_logs(runtime.config.logs_dir)
            log.info("logs_cleared", files=cleared)
            return ClearLogsResponse(cleared=cleared)

        return app

    @property
    def app(self) -> FastAPI:
        """FastAPI-App-Instanz (für Tests und uvicorn)."""
        if self._app is None:
            self._app = self._create_app()
        return self._app
