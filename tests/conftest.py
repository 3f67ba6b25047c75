"""
Fangwen · Shared Test-Fixtures.

Alle Tests nutzen ein temporäres Verzeichnis statt ~/.fangwen/.
So sind Tests isoliert und reproduzierbar.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest

from fangwen.config import FangwenConfig, ensure_directory_structure
from fangwen.models import VisitOutcome

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def tmp_fangwen_home(tmp_path: Path) -> Path:
    """Temporäres Fangwen-Home-Verzeichnis."""
    return tmp_path / ".fangwen"


@pytest.fixture
def config(tmp_fangwen_home: Path) -> FangwenConfig:
    """FangwenConfig mit temporärem Home, ohne Watcher und Status-Report."""
    cfg = FangwenConfig(fangwen_home=tmp_fangwen_home)
    cfg.scheduler.watch_targets = False
    cfg.scheduler.status_report_minutes = 0
    cfg.api.api_token = "test-token"
    return cfg


@pytest.fixture
def initialized_config(config: FangwenConfig) -> FangwenConfig:
    """FangwenConfig mit erstellter Verzeichnisstruktur."""
    ensure_directory_structure(config)
    return config


@pytest.fixture
def sample_targets() -> list[dict[str, Any]]:
    return [
        {"id": "ping", "url": "https://example.org/health", "intervalSeconds": 60, "randomRange": 10},
        {
            "id": "report",
            "url": "https://example.org/report",
            "method": "POST",
            "data": {"sent_at": "{{current_time}}"},
            "intervalSeconds": 300,
            "enabled": False,
        },
    ]


@pytest.fixture
def targets_file(initialized_config: FangwenConfig, sample_targets: list[dict[str, Any]]) -> Path:
    """Ziel-Datei mit zwei Einträgen."""
    path = initialized_config.targets_path
    path.write_text(json.dumps({"urls": sample_targets}, indent=2), encoding="utf-8")
    return path


@pytest.fixture
def ok_outcome() -> VisitOutcome:
    return VisitOutcome(success=True, status_code=200, status_text="OK", duration_millis=12)


@pytest.fixture
def mock_invoker(ok_outcome: VisitOutcome) -> AsyncMock:
    """Invoker-Stub: jeder Besuch gelingt mit 200."""
    invoker = AsyncMock()
    invoker.visit.return_value = ok_outcome
    return invoker
