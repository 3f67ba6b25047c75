"""Ziel-Verwaltung: Laden, Validieren, Speichern der urls.json.

Lädt Ziel-Definitionen aus einer JSON-Datei (YAML mit gleicher Struktur
wird ebenfalls akzeptiert) und stellt sie als validierte TaskDefinitions
bereit. Format::

    {
      "urls": [
        {"id": "ping", "url": "https://example.org", "intervalSeconds": 60,
         "randomRange": 10, "method": "GET", "enabled": true}
      ]
    }
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import httpx
import yaml

from fangwen.errors import ConfigError, InvalidTaskConfig
from fangwen.models import RECOMMENDED_MIN_INTERVAL_SECONDS, TaskDefinition
from fangwen.utils.logging import get_logger

log = get_logger(__name__)

TEMPLATE_CURRENT_TIME = "{{current_time}}"


def process_template_data(data: Any, *, now: datetime | None = None) -> Any:
    """Ersetzt ``{{current_time}}`` rekursiv in allen String-Werten."""
    if isinstance(data, str):
        if TEMPLATE_CURRENT_TIME not in data:
            return data
        stamp = (now or datetime.now(UTC)).isoformat().replace("+00:00", "Z")
        return data.replace(TEMPLATE_CURRENT_TIME, stamp)
    if isinstance(data, dict):
        return {key: process_template_data(value, now=now) for key, value in data.items()}
    if isinstance(data, list):
        return [process_template_data(value, now=now) for value in data]
    return data


def validate_target(raw: dict[str, Any]) -> TaskDefinition:
    """Validiert einen Eintrag der Ziel-Datei.

    Raises:
        InvalidTaskConfig: Pflichtfeld fehlt oder URL ist ungültig.
    """
    task = TaskDefinition.parse(raw)

    try:
        url = httpx.URL(task.url)
    except httpx.InvalidURL as exc:
        msg = f"Ungültiges URL-Format: {task.url}"
        raise InvalidTaskConfig(msg, details={"task_id": task.id}) from exc
    if url.scheme not in ("http", "https") or not url.host:
        msg = f"Ungültiges URL-Format: {task.url}"
        raise InvalidTaskConfig(msg, details={"task_id": task.id})

    if task.interval_seconds < RECOMMENDED_MIN_INTERVAL_SECONDS:
        log.warning(
            "target_interval_short",
            task_id=task.id,
            interval=task.interval_seconds,
            recommended=RECOMMENDED_MIN_INTERVAL_SECONDS,
        )
    return task


class TargetStore:
    """Lädt und verwaltet Ziel-Definitionen aus der urls.json.

    Attributes:
        path: Pfad zur Ziel-Datei.
        data: Zuletzt geladenes Dokument (inkl. fremder Top-Level-Keys).
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self.data: dict[str, Any] = {}
        self._last_modified: float | None = None

    def load(self, *, force: bool = False) -> dict[str, Any]:
        """Lädt die Datei, wenn sie sich seit dem letzten Laden geändert hat.

        Args:
            force: Immer neu lesen, auch bei unveränderter mtime.

        Returns:
            Das geladene Dokument.

        Raises:
            ConfigError: Datei fehlt oder ist nicht lesbar/parsbar.
        """
        if not self.path.exists():
            msg = f"Ziel-Datei existiert nicht: {self.path}"
            raise ConfigError(msg, details={"path": str(self.path)})

        mtime = self.path.stat().st_mtime
        if not force and self.data and self._last_modified == mtime:
            return self.data

        try:
            text = self.path.read_text(encoding="utf-8")
            raw = (json.loads(text) if self._is_json else yaml.safe_load(text)) or {}
        except (json.JSONDecodeError, yaml.YAMLError, OSError) as exc:
            msg = f"Ziel-Datei konnte nicht geladen werden: {exc}"
            raise ConfigError(msg, details={"path": str(self.path)}) from exc

        if not isinstance(raw, dict):
            msg = "Ziel-Datei muss ein Objekt mit 'urls'-Liste enthalten"
            raise ConfigError(msg, details={"path": str(self.path)})

        self.data = raw
        self._last_modified = mtime
        log.info(
            "targets_loaded",
            path=str(self.path),
            urls_count=len(self.raw_targets()),
            last_modified=datetime.fromtimestamp(mtime, UTC).isoformat(),
        )
        return self.data

    @property
    def _is_json(self) -> bool:
        return self.path.suffix.lower() not in (".yaml", ".yml")

    def has_changed(self) -> bool:
        """True wenn sich die mtime seit dem letzten Laden geändert hat."""
        try:
            return self.path.stat().st_mtime != self._last_modified
        except OSError:
            return False

    def raw_targets(self) -> list[dict[str, Any]]:
        urls = self.data.get("urls") or []
        return [entry for entry in urls if isinstance(entry, dict)] if isinstance(urls, list) else []

    def get_task_definitions(self, *, force: bool = False) -> list[TaskDefinition]:
        """Lädt und liefert alle gültigen Ziele, Templates aufgelöst.

        Ungültige Einträge werden geloggt und übersprungen.
        """
        self.load(force=force)
        tasks: list[TaskDefinition] = []
        for raw in self.raw_targets():
            try:
                task = validate_target(raw)
            except InvalidTaskConfig as exc:
                log.error("target_invalid", task_id=raw.get("id"), error=str(exc))
                continue
            if task.body is not None:
                task = task.model_copy(update={"body": process_template_data(task.body)})
            tasks.append(task)
        return tasks

    def save_targets(self, targets: list[dict[str, Any]]) -> list[TaskDefinition]:
        """Validiert alle Ziele und schreibt sie in die Datei.

        Es wird nur gespeichert, wenn alle Einträge gültig sind.

        Returns:
            Die validierten Definitionen.

        Raises:
            InvalidTaskConfig: Mindestens ein Eintrag ist ungültig.
        """
        tasks = [validate_target(raw) for raw in targets]
        seen: set[str] = set()
        for task in tasks:
            if task.id in seen:
                msg = f"Doppelte Task-ID: {task.id}"
                raise InvalidTaskConfig(msg, details={"task_id": task.id})
            seen.add(task.id)

        if self.path.exists():
            self.load()
        self.data["urls"] = [task.to_config_dict() for task in tasks]
        self._write()
        log.info("targets_saved", path=str(self.path), count=len(tasks))
        return tasks

    def set_enabled(self, task_id: str, enabled: bool) -> bool:
        """Setzt das enabled-Flag eines Ziels und speichert die Datei.

        Returns:
            True wenn das Ziel existiert.
        """
        self.load()
        for entry in self.raw_targets():
            if str(entry.get("id")) == task_id:
                entry["enabled"] = enabled
                self._write()
                log.info("target_toggled", task_id=task_id, enabled=enabled)
                return True
        return False

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self._is_json:
            text = yaml.dump(self.data, default_flow_style=False, allow_unicode=True, sort_keys=False)
        else:
            text = json.dumps(self.data, indent=2, ensure_ascii=False) + "\n"
        self.path.write_text(text, encoding="utf-8")
        self._last_modified = self.path.stat().st_mtime
