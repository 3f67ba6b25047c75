"""
Fangwen · Structured Logging Setup.

Zwei Renderer:
- Entwicklung: Farbige Konsole
- Produktion: JSON-Lines (Konsole und Log-Datei)

Verwendung in jedem Modul:
    from fangwen.utils.logging import get_logger
    log = get_logger(__name__)
    log.info("event_name", key="value")
"""

from __future__ import annotations

import inspect
import json
import logging
import sys
from collections import deque
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

LOG_FILE_NAME = "fangwen.jsonl"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3

# Log-Typen der Control-API: alles oder nur Fehler
LOG_TYPES = ("combined", "error")
_ERROR_LEVELS = frozenset({"error", "critical", "exception"})

_NOISY_LOGGERS = ("httpx", "httpcore", "asyncio", "apscheduler", "watchdog", "uvicorn.access")


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Gibt einen strukturierten Logger zurück."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]


def setup_logging(
    *,
    level: str = "INFO",
    log_dir: Path | None = None,
    json_logs: bool = False,
    console: bool = True,
) -> None:
    """Initialisiert das Logging-System. Muss einmal beim Start aufgerufen werden.

    Args:
        level: Log-Level als String (DEBUG, INFO, WARNING, ERROR).
        log_dir: Verzeichnis für JSONL-Log-Dateien. None = keine Datei-Logs.
        json_logs: True = JSON-Output auch auf Konsole (für Produktion).
        console: True = Log-Ausgabe auf stderr.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler_list: list[logging.Handler] = []

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        handler_list.append(console_handler)

    # Datei-Log immer auf DEBUG, rotierend (5 MB, 3 Backups)
    file_handler: logging.Handler | None = None
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        handler_list.append(file_handler)

    logging.basicConfig(
        format="%(message)s",
        level=logging.DEBUG if file_handler is not None else log_level,
        handlers=handler_list,
        force=True,
    )

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    json_renderer = structlog.processors.JSONRenderer(ensure_ascii=False)
    if json_logs:
        console_renderer: structlog.types.Processor = json_renderer
    else:
        # pad_event wurde in structlog 25.5 zu pad_event_to umbenannt
        cr_params = inspect.signature(structlog.dev.ConsoleRenderer).parameters
        pad_kwarg = "pad_event_to" if "pad_event_to" in cr_params else "pad_event"
        console_renderer = structlog.dev.ConsoleRenderer(colors=True, **{pad_kwarg: 40})

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    for handler in logging.root.handlers:
        # Datei bekommt immer JSON-Lines, Konsole je nach json_logs
        renderer = json_renderer if handler is file_handler else console_renderer
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
            )
        )


# ============================================================================
# Log-Datei lesen / leeren (Control-API)
# ============================================================================


def _is_error_line(line: str) -> bool:
    try:
        entry = json.loads(line)
    except ValueError:
        return False
    return isinstance(entry, dict) and str(entry.get("level", "")).lower() in _ERROR_LEVELS


def read_log_tail(log_dir: Path, *, lines: int = 100, log_type: str = "combined") -> list[str]:
    """Liefert die letzten ``lines`` Zeilen der aktuellen Log-Datei.

    Args:
        log_dir: Verzeichnis mit ``fangwen.jsonl``.
        lines: Maximale Anzahl Zeilen.
        log_type: ``combined`` = alle Einträge, ``error`` = nur error/critical.

    Returns:
        Zeilen in Datei-Reihenfolge, leer wenn die Datei fehlt.
    """
    log_file = log_dir / LOG_FILE_NAME
    if not log_file.exists():
        return []
    with open(log_file, encoding="utf-8", errors="replace") as f:
        entries = (line.rstrip("\n") for line in f if line.strip())
        if log_type == "error":
            entries = (line for line in entries if _is_error_line(line))
        return list(deque(entries, maxlen=lines))


def clear_logs(log_dir: Path) -> list[str]:
    """Leert die Log-Datei samt rotierten Backups.

    Die Dateien werden gekürzt, nicht gelöscht; ein offener
    RotatingFileHandler schreibt danach einfach weiter.

    Returns:
        Namen der geleerten Dateien.
    """
    cleared: list[str] = []
    candidates = [log_dir / LOG_FILE_NAME]
    candidates += [log_dir / f"{LOG_FILE_NAME}.{i}" for i in range(1, LOG_FILE_BACKUPS + 1)]
    for path in candidates:
        if path.exists():
            path.write_text("", encoding="utf-8")
            cleared.append(path.name)
    return cleared
