"""
Fangwen · Central data models.

All Pydantic models shared between scheduler, invoker, store and API.

Design principles:
  - Task definitions are frozen; edits produce a copy (model_copy)
  - Runtime state is mutable and owned by the TaskScheduler alone
  - JSON field names of the target file (camelCase) are accepted as aliases
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
)

from fangwen.errors import InvalidTaskConfig

# ============================================================================
# Konstanten
# ============================================================================

DEFAULT_TIMEOUT_MILLIS = 30_000
RECOMMENDED_MIN_INTERVAL_SECONDS = 10

# Methoden, bei denen ein Request-Body mitgesendet wird
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

_REQUIRED_TASK_FIELDS = ("id", "url", "interval_seconds")
_FIELD_ALIASES = {"interval_seconds": "intervalSeconds"}


def _header_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value if isinstance(value, str) else str(value)


# ============================================================================
# Task-Definition
# ============================================================================


class TaskDefinition(BaseModel):
    """Ein geplanter URL-Besuch.

    Entspricht einem Eintrag in ``urls.json``::

        {"id": "ping", "url": "https://example.org/health",
         "intervalSeconds": 60, "randomRange": 15, "enabled": true}
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(min_length=1)
    url: str = Field(min_length=1)
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any | None = Field(default=None, validation_alias=AliasChoices("body", "data"), serialization_alias="data")
    interval_seconds: float = Field(
        ge=1,
        validation_alias=AliasChoices("interval_seconds", "intervalSeconds"),
        serialization_alias="intervalSeconds",
    )
    random_range_seconds: float = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("random_range_seconds", "randomRange", "randomRangeSeconds"),
        serialization_alias="randomRange",
    )
    enabled: bool = True
    timeout_millis: int | None = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("timeout_millis", "timeout", "timeoutMillis"),
        serialization_alias="timeout",
    )

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        # Numerische IDs aus der Ziel-Datei zulassen
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("headers", mode="before")
    @classmethod
    def _stringify_headers(cls, value: Any) -> Any:
        if value is None:
            return {}
        if isinstance(value, dict):
            return {str(k): _header_value(v) for k, v in value.items() if v is not None}
        return value

    @field_validator("method")
    @classmethod
    def _normalize_method(cls, value: str) -> str:
        return (value or "GET").strip().upper()

    @field_validator("random_range_seconds", mode="before")
    @classmethod
    def _none_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_serializer("interval_seconds", "random_range_seconds")
    def _integral_as_int(self, value: float) -> int | float:
        # 60.0 -> 60 in der gespeicherten Ziel-Datei
        return int(value) if float(value).is_integer() else value

    @property
    def interval_millis(self) -> int:
        return int(self.interval_seconds * 1000)

    @property
    def random_range_millis(self) -> int:
        return int(self.random_range_seconds * 1000)

    @classmethod
    def parse(cls, raw: TaskDefinition | dict[str, Any]) -> TaskDefinition:
        """Erzeugt eine TaskDefinition aus einem Mapping.

        Pflichtfelder (``id``, ``url``, ``intervalSeconds``) müssen vorhanden
        und nicht leer sein.

        Raises:
            InvalidTaskConfig: Bei fehlenden oder ungültigen Feldern.
        """
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, dict):
            msg = f"Task-Definition muss ein Mapping sein, nicht {type(raw).__name__}"
            raise InvalidTaskConfig(msg)

        missing = [
            name for name in _REQUIRED_TASK_FIELDS
            if not raw.get(name) and not raw.get(_FIELD_ALIASES.get(name, name))
        ]
        if missing:
            msg = f"Task-Konfiguration fehlen Pflichtfelder: {', '.join(missing)}"
            raise InvalidTaskConfig(msg, details={"task_id": raw.get("id"), "missing": missing})

        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            msg = f"Ungültige Task-Konfiguration '{raw.get('id')}': {exc}"
            raise InvalidTaskConfig(msg, details={"task_id": raw.get("id")}) from exc

    def to_config_dict(self) -> dict[str, Any]:
        """Serialisiert im Format der Ziel-Datei (camelCase, ohne None-Werte)."""
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if not data.get("headers"):
            data.pop("headers", None)
        return data


# ============================================================================
# Invoker: Request & Outcome
# ============================================================================


class VisitRequest(BaseModel, frozen=True):
    """Ein einzelner ausgehender Request."""

    url: str
    method: str = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any | None = None
    timeout_millis: int = DEFAULT_TIMEOUT_MILLIS

    @classmethod
    def from_task(cls, task: TaskDefinition, *, default_timeout_millis: int = DEFAULT_TIMEOUT_MILLIS) -> VisitRequest:
        return cls(
            url=task.url,
            method=task.method,
            headers=dict(task.headers),
            body=task.body,
            timeout_millis=task.timeout_millis or default_timeout_millis,
        )


class VisitOutcome(BaseModel, frozen=True):
    """Strukturiertes Ergebnis eines Besuchs.

    ``success`` ist True, sobald der Aufruf abgeschlossen wurde und der
    Statuscode unter 500 liegt. Netzwerkfehler, Timeouts und 5xx liefern
    ``success=False`` mit ``error_message``.
    """

    success: bool
    status_code: int | None = None
    status_text: str | None = None
    body: Any | None = None
    headers: dict[str, str] | None = None
    duration_millis: int = 0
    error_message: str | None = None
    error_code: str | None = None


# ============================================================================
# Scheduler: Runtime-State & Status
# ============================================================================


class TaskRuntimeState(BaseModel):
    """Veränderlicher Laufzeitzustand eines Tasks.

    Gehört ausschließlich dem TaskScheduler. ``job_id`` ist genau dann
    gesetzt, wenn die Timer-Kette des Tasks scharf ist.
    """

    task_id: str
    job_id: str | None = None
    next_run_at: datetime | None = None
    last_execution_at: datetime | None = None
    last_outcome: VisitOutcome | None = None
    run_count: int = 0
    failure_count: int = 0

    @property
    def active(self) -> bool:
        return self.job_id is not None


class TaskStatus(BaseModel, frozen=True):
    """Status-Snapshot eines Tasks für die Control-API."""

    url: str
    interval_seconds: float
    random_range_seconds: float
    enabled: bool
    active: bool
    last_execution_at: datetime | None = None
    estimated_next_execution_at: datetime | None = None
    scheduled_at: datetime | None = None
    last_success: bool | None = None
    run_count: int = 0
    failure_count: int = 0
