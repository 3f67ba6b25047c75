"""
Fangwen · Configuration system.

Loads configuration from:
  1. Defaults (defined here)
  2. ~/.fangwen/config.yaml (overrides defaults)
  3. Environment variables FANGWEN_* (overrides everything)

The target list itself (urls.json) is not part of this configuration;
it is owned by the TargetStore and can be hot-reloaded.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from fangwen.models import DEFAULT_TIMEOUT_MILLIS

log = logging.getLogger(__name__)

ENV_PREFIX = "FANGWEN_"

# ============================================================================
# Konfigurationsmodelle
# ============================================================================


class LoggingConfig(BaseModel):
    """Logging-Konfiguration."""

    level: str = "INFO"
    json_logs: bool = False
    console: bool = True


class ApiConfig(BaseModel):
    """Control-API (FastAPI/uvicorn)."""

    host: str = "127.0.0.1"
    port: int = Field(default=3000, ge=1, le=65535)
    api_token: str = ""
    """Bearer-Token. Leer = alle geschützten Endpunkte antworten mit 503."""
    cors_origins: list[str] = Field(default_factory=list)


class InvokerConfig(BaseModel):
    """Ausgehende Requests."""

    timeout_millis: int = Field(default=DEFAULT_TIMEOUT_MILLIS, ge=100, le=600_000)
    user_agent: str = ""
    """Leer = Standard-User-Agent ``Auto-Fangwen/<version>``."""


class SchedulerConfig(BaseModel):
    """Scheduler-Einstellungen."""

    status_report_minutes: int = Field(default=60, ge=0, le=24 * 60)
    """Intervall des Status-Reports im Log. 0 = deaktiviert."""
    watch_targets: bool = True
    """Ziel-Datei überwachen und bei Änderung neu laden."""
    reload_debounce_seconds: float = Field(default=1.0, ge=0.0, le=60.0)


class FangwenConfig(BaseModel):
    """Vollständige Fangwen-Konfiguration.

    Wird einmal beim Start geladen und im ganzen System verwendet.
    """

    fangwen_home: Path = Field(default_factory=lambda: Path.home() / ".fangwen")
    targets_file: Path | None = None
    """Pfad zur urls.json. None = ``<fangwen_home>/urls.json``."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    invoker: InvokerConfig = Field(default_factory=InvokerConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    @property
    def config_file(self) -> Path:
        """Pfad zur Fangwen-Konfigurationsdatei."""
        return self.fangwen_home / "config.yaml"

    @property
    def targets_path(self) -> Path:
        """Aufgelöster Pfad der Ziel-Datei."""
        if self.targets_file is None:
            return self.fangwen_home / "urls.json"
        if not self.targets_file.is_absolute():
            return self.fangwen_home / self.targets_file
        return self.targets_file

    @property
    def logs_dir(self) -> Path:
        """Verzeichnis für Log-Dateien."""
        return self.fangwen_home / "logs"


# ============================================================================
# Config-Laden
# ============================================================================


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Wendet FANGWEN_* Umgebungsvariablen an.

    Konvention: FANGWEN_SECTION_KEY → data["section"]["key"]
    Beispiel: FANGWEN_API_PORT → data["api"]["port"]
    Top-Level-Felder: FANGWEN_TARGETS_FILE → data["targets_file"]
    """
    top_level = set(FangwenConfig.model_fields)
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        name = key[len(ENV_PREFIX):].lower()
        if name in top_level:
            data[name] = value
            continue
        section, _, leaf = name.partition("_")
        if not leaf:
            continue
        node = data.setdefault(section, {})
        if isinstance(node, dict):
            node[leaf] = value
    return data


def load_config(config_path: Path | None = None) -> FangwenConfig:
    """Lädt die Konfiguration.

    Reihenfolge (spätere überschreiben frühere):
      1. Defaults (in den Pydantic-Modellen)
      2. config.yaml (wenn vorhanden)
      3. FANGWEN_* Umgebungsvariablen

    Args:
        config_path: Expliziter Pfad zur config.yaml. Wenn None: ~/.fangwen/config.yaml

    Returns:
        Vollständig validierte FangwenConfig.
    """
    data: dict[str, Any] = {}

    if config_path is None:
        config_path = Path.home() / ".fangwen" / "config.yaml"

    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                file_data = yaml.safe_load(f) or {}
            if isinstance(file_data, dict):
                data = file_data
        except yaml.YAMLError as exc:
            log.warning("Fehlerhafte config.yaml wird ignoriert: %s", exc)

    data = _apply_env_overrides(data)

    return FangwenConfig(**data)


# ============================================================================
# Verzeichnisstruktur erstellen
# ============================================================================


_DEFAULT_TARGETS = """\
{
  "urls": []
}
"""


def ensure_directory_structure(config: FangwenConfig) -> list[str]:
    """Erstellt ~/.fangwen/ samt Log-Verzeichnis und leerer urls.json.

    Idempotent -- erstellt nur was fehlt, überschreibt nie vorhandene Dateien.

    Returns:
        Liste der neu erstellten Pfade (für Logging).
    """
    created: list[str] = []

    for d in (config.fangwen_home, config.logs_dir, config.targets_path.parent):
        if not d.exists():
            d.mkdir(parents=True, exist_ok=True)
            created.append(str(d))

    if not config.targets_path.exists():
        config.targets_path.write_text(_DEFAULT_TARGETS, encoding="utf-8")
        created.append(str(config.targets_path))

    return created
