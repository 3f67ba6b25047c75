"""Tests für das Konfigurationssystem."""

from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING

import pytest
import yaml

from fangwen.config import FangwenConfig, ensure_directory_structure, load_config

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("FANGWEN_"):
            monkeypatch.delenv(key)


class TestDefaults:
    def test_default_values(self, tmp_path: Path) -> None:
        cfg = FangwenConfig(fangwen_home=tmp_path)
        assert cfg.api.port == 3000
        assert cfg.api.host == "127.0.0.1"
        assert cfg.api.api_token == ""
        assert cfg.invoker.timeout_millis == 30_000
        assert cfg.scheduler.status_report_minutes == 60
        assert cfg.targets_path == tmp_path / "urls.json"
        assert cfg.logs_dir == tmp_path / "logs"

    def test_relative_targets_file(self, tmp_path: Path) -> None:
        cfg = FangwenConfig(fangwen_home=tmp_path, targets_file="ziele/urls.json")
        assert cfg.targets_path == tmp_path / "ziele" / "urls.json"

    def test_absolute_targets_file(self, tmp_path: Path) -> None:
        cfg = FangwenConfig(fangwen_home=tmp_path, targets_file=tmp_path / "x.json")
        assert cfg.targets_path == tmp_path / "x.json"


class TestLoadConfig:
    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        cfg = load_config(tmp_path / "gibtsnicht.yaml")
        assert cfg.api.port == 3000

    def test_yaml_overrides(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.dump({"api": {"port": 8080, "api_token": "abc"}, "scheduler": {"watch_targets": False}}),
            encoding="utf-8",
        )
        cfg = load_config(path)
        assert cfg.api.port == 8080
        assert cfg.api.api_token == "abc"
        assert cfg.scheduler.watch_targets is False

    def test_broken_yaml_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("api: [unvollständig", encoding="utf-8")
        cfg = load_config(path)
        assert cfg.api.port == 3000

    def test_env_overrides(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"api": {"port": 8080}}), encoding="utf-8")
        monkeypatch.setenv("FANGWEN_API_PORT", "9090")
        monkeypatch.setenv("FANGWEN_INVOKER_TIMEOUT_MILLIS", "5000")
        monkeypatch.setenv("FANGWEN_TARGETS_FILE", str(tmp_path / "t.json"))

        cfg = load_config(path)

        assert cfg.api.port == 9090
        assert cfg.invoker.timeout_millis == 5000
        assert cfg.targets_path == tmp_path / "t.json"


class TestDirectoryStructure:
    def test_creates_home_and_targets(self, config: FangwenConfig) -> None:
        created = ensure_directory_structure(config)

        assert config.logs_dir.is_dir()
        assert json.loads(config.targets_path.read_text(encoding="utf-8")) == {"urls": []}
        assert str(config.targets_path) in created

    def test_idempotent(self, initialized_config: FangwenConfig) -> None:
        initialized_config.targets_path.write_text('{"urls": [{"id": "x"}]}', encoding="utf-8")
        assert ensure_directory_structure(initialized_config) == []
        assert "x" in initialized_config.targets_path.read_text(encoding="utf-8")
