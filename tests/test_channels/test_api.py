"""Tests für die Control-API.

Testet HTTP-Endpunkte, Bearer-Auth und die Fehlerabbildung
(UnknownTask → 404, ungültige Konfiguration → 400).
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from fangwen import __version__
from fangwen.app import FangwenApp
from fangwen.channels.api import ControlAPI, HealthResponse, ToggleRequest
from fangwen.utils.logging import LOG_FILE_NAME

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

    from fangwen.config import FangwenConfig

# ============================================================================
# Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def runtime(
    initialized_config: FangwenConfig, targets_file: Path, mock_invoker: AsyncMock
) -> AsyncIterator[FangwenApp]:
    app = FangwenApp(initialized_config, invoker=mock_invoker)
    await app.initialize()
    yield app
    await app.shutdown()


@pytest_asyncio.fixture
async def client(runtime: FangwenApp) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=ControlAPI(runtime).app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"Authorization": "Bearer test-token"},
    ) as ac:
        yield ac


@pytest_asyncio.fixture
async def anon_client(runtime: FangwenApp) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=ControlAPI(runtime).app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ============================================================================
# Pydantic-Modelle
# ============================================================================


class TestModels:
    def test_health_response_defaults(self) -> None:
        hr = HealthResponse(timestamp="2026-01-01T00:00:00+00:00")
        assert hr.status == "ok"
        assert hr.version == __version__
        assert hr.tasks == 0

    def test_toggle_request_requires_flag(self) -> None:
        with pytest.raises(Exception):  # ValidationError
            ToggleRequest()


# ============================================================================
# Auth
# ============================================================================


class TestAuth:
    @pytest.mark.asyncio
    async def test_health_without_token(self, anon_client: AsyncClient) -> None:
        resp = await anon_client.get("/api/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert data["tasks"] == 2
        assert "uptime_seconds" in data

    @pytest.mark.asyncio
    async def test_missing_token_rejected(self, anon_client: AsyncClient) -> None:
        resp = await anon_client.get("/api/tasks/status")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_wrong_token_rejected(self, anon_client: AsyncClient) -> None:
        resp = await anon_client.get(
            "/api/tasks/status", headers={"Authorization": "Bearer falsch"}
        )
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_unconfigured_token_is_503(self, runtime: FangwenApp) -> None:
        runtime.config.api.api_token = ""
        transport = ASGITransport(app=ControlAPI(runtime).app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            resp = await ac.get("/api/tasks/status", headers={"Authorization": "Bearer x"})
        assert resp.status_code == 503


# ============================================================================
# Tasks
# ============================================================================


class TestTaskEndpoints:
    @pytest.mark.asyncio
    async def test_status(self, client: AsyncClient) -> None:
        resp = await client.get("/api/tasks/status")
        assert resp.status_code == 200
        tasks = resp.json()["tasks"]
        assert set(tasks) == {"ping", "report"}
        assert tasks["ping"]["active"] is True
        assert tasks["ping"]["url"] == "https://example.org/health"
        assert tasks["report"]["active"] is False
        assert tasks["ping"]["last_execution_at"] is None

    @pytest.mark.asyncio
    async def test_toggle(self, client: AsyncClient, runtime: FangwenApp, targets_file: Path) -> None:
        resp = await client.post("/api/tasks/ping/toggle", json={"enabled": False})

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "task_id": "ping", "enabled": False}
        assert not runtime.tasks_status()["ping"].active
        saved = json.loads(targets_file.read_text(encoding="utf-8"))
        assert saved["urls"][0]["enabled"] is False

    @pytest.mark.asyncio
    async def test_toggle_unknown_is_404(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks/nope/toggle", json={"enabled": True})
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_trigger(self, client: AsyncClient, runtime: FangwenApp, mock_invoker: AsyncMock) -> None:
        resp = await client.post("/api/tasks/report/trigger")

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        mock_invoker.visit.assert_awaited_once()
        assert runtime.tasks_status()["report"].last_execution_at is not None

    @pytest.mark.asyncio
    async def test_trigger_unknown_is_404(self, client: AsyncClient) -> None:
        resp = await client.post("/api/tasks/nope/trigger")
        assert resp.status_code == 404


# ============================================================================
# Konfiguration
# ============================================================================


class TestConfigEndpoints:
    @pytest.mark.asyncio
    async def test_get_urls(self, client: AsyncClient) -> None:
        resp = await client.get("/api/config/urls")
        assert resp.status_code == 200
        urls = resp.json()["urls"]
        assert [u["id"] for u in urls] == ["ping", "report"]
        assert urls[0]["intervalSeconds"] == 60

    @pytest.mark.asyncio
    async def test_save_urls(self, client: AsyncClient, runtime: FangwenApp) -> None:
        resp = await client.post(
            "/api/config/urls",
            json={"urls": [{"id": "neu", "url": "https://example.org/neu", "intervalSeconds": 30}]},
        )

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "tasks": 1}
        assert runtime.scheduler.task_ids == ["neu"]

    @pytest.mark.asyncio
    async def test_save_invalid_urls_is_400(self, client: AsyncClient, runtime: FangwenApp) -> None:
        resp = await client.post("/api/config/urls", json={"urls": [{"id": "ohne-url", "intervalSeconds": 30}]})

        assert resp.status_code == 400
        assert "url" in resp.json()["detail"]
        assert sorted(runtime.scheduler.task_ids) == ["ping", "report"]

    @pytest.mark.asyncio
    async def test_reload(self, client: AsyncClient, targets_file: Path) -> None:
        targets_file.write_text(json.dumps({"urls": []}), encoding="utf-8")

        resp = await client.post("/api/config/reload")

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "tasks": 0}

    @pytest.mark.asyncio
    async def test_reload_broken_file_is_400(self, client: AsyncClient, targets_file: Path) -> None:
        targets_file.write_text("{kaputt", encoding="utf-8")

        resp = await client.post("/api/config/reload")

        assert resp.status_code == 400


# ============================================================================
# Logs
# ============================================================================


@pytest.fixture
def log_file(runtime: FangwenApp) -> Path:
    path = runtime.config.logs_dir / LOG_FILE_NAME
    path.parent.mkdir(parents=True, exist_ok=True)
    entries = [
        {"event": "task_executed", "level": "info", "task_id": "ping"},
        {"event": "task_execution_failed", "level": "error", "task_id": "report"},
        {"event": "status_report", "level": "info"},
    ]
    path.write_text("\n".join(json.dumps(e) for e in entries) + "\n", encoding="utf-8")
    return path


class TestLogs:
    @pytest.mark.asyncio
    async def test_tail(self, client: AsyncClient, log_file: Path) -> None:
        resp = await client.get("/api/logs", params={"lines": 2})

        assert resp.status_code == 200
        events = [json.loads(line)["event"] for line in resp.json()["logs"]]
        assert events == ["task_execution_failed", "status_report"]

    @pytest.mark.asyncio
    async def test_error_type(self, client: AsyncClient, log_file: Path) -> None:
        resp = await client.get("/api/logs", params={"type": "error"})

        assert resp.status_code == 200
        events = [json.loads(line)["event"] for line in resp.json()["logs"]]
        assert events == ["task_execution_failed"]

    @pytest.mark.asyncio
    async def test_unknown_type_is_400(self, client: AsyncClient, log_file: Path) -> None:
        resp = await client.get("/api/logs", params={"type": "debug"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_invalid_line_count_is_422(self, client: AsyncClient, log_file: Path) -> None:
        resp = await client.get("/api/logs", params={"lines": 0})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_requires_token(self, anon_client: AsyncClient, log_file: Path) -> None:
        assert (await anon_client.get("/api/logs")).status_code == 401
        assert (await anon_client.delete("/api/logs")).status_code == 401
        assert log_file.read_text(encoding="utf-8") != ""

    @pytest.mark.asyncio
    async def test_clear(self, client: AsyncClient, log_file: Path) -> None:
        resp = await client.delete("/api/logs")

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert LOG_FILE_NAME in body["cleared"]
        assert log_file.read_text(encoding="utf-8") == ""

        resp = await client.get("/api/logs")
        assert resp.json() == {"logs": []}

    @pytest.mark.asyncio
    async def test_clear_alias_route(self, client: AsyncClient, log_file: Path) -> None:
        resp = await client.delete("/api/logs/clear")

        assert resp.status_code == 200
        assert log_file.read_text(encoding="utf-8") == ""
