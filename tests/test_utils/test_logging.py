"""
Tests für fangwen.utils.logging – Structured Logging.

Testet:
  - Setup mit verschiedenen Konfigurationen
  - JSON-Lines in der Log-Datei
  - Gedämpfte Third-Party-Logger
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from fangwen.utils.logging import LOG_FILE_NAME, clear_logs, get_logger, read_log_tail, setup_logging

if TYPE_CHECKING:
    from pathlib import Path


class TestLoggingSetup:
    def test_default_setup(self) -> None:
        """Logging initialisiert ohne Fehler."""
        setup_logging(level="INFO", console=True)
        log = get_logger("test")
        log.info("test_event", key="value")

    def test_json_mode(self) -> None:
        setup_logging(level="INFO", json_logs=True, console=True)
        log = get_logger("test.json")
        log.info("json_test", number=42)

    def test_file_logging(self, tmp_path: Path) -> None:
        log_dir = tmp_path / "logs"
        setup_logging(level="DEBUG", log_dir=log_dir, console=False)
        log = get_logger("test.file")
        log.info("file_event", task_id="t1")

        for handler in logging.root.handlers:
            handler.flush()

        lines = (log_dir / LOG_FILE_NAME).read_text(encoding="utf-8").splitlines()
        events = [json.loads(line) for line in lines]
        assert any(e["event"] == "file_event" and e["task_id"] == "t1" for e in events)

    def test_noisy_loggers_quieted(self) -> None:
        setup_logging(level="DEBUG", console=True)
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("apscheduler").level == logging.WARNING


class TestLogFileAccess:
    def _write(self, log_dir: Path) -> None:
        log_dir.mkdir(parents=True, exist_ok=True)
        entries = [
            {"event": "eins", "level": "info"},
            {"event": "zwei", "level": "error"},
            {"event": "drei", "level": "info"},
        ]
        text = "\n".join(json.dumps(e) for e in entries) + "\n\nkein json\n"
        (log_dir / LOG_FILE_NAME).write_text(text, encoding="utf-8")

    def test_tail(self, tmp_path: Path) -> None:
        self._write(tmp_path)
        lines = read_log_tail(tmp_path, lines=2)
        assert len(lines) == 2
        assert json.loads(lines[0])["event"] == "drei"
        assert lines[1] == "kein json"

    def test_error_only(self, tmp_path: Path) -> None:
        self._write(tmp_path)
        lines = read_log_tail(tmp_path, log_type="error")
        assert [json.loads(line)["event"] for line in lines] == ["zwei"]

    def test_missing_file(self, tmp_path: Path) -> None:
        assert read_log_tail(tmp_path / "gibtsnicht") == []

    def test_clear_truncates_backups(self, tmp_path: Path) -> None:
        self._write(tmp_path)
        (tmp_path / f"{LOG_FILE_NAME}.1").write_text("alt\n", encoding="utf-8")

        cleared = clear_logs(tmp_path)

        assert cleared == [LOG_FILE_NAME, f"{LOG_FILE_NAME}.1"]
        assert (tmp_path / LOG_FILE_NAME).read_text(encoding="utf-8") == ""
        assert (tmp_path / f"{LOG_FILE_NAME}.1").read_text(encoding="utf-8") == ""
        assert read_log_tail(tmp_path) == []
