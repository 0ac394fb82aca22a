"""Tests for the application entry point and status server."""

import asyncio
import json

import pytest
from aiohttp import test_utils

from innersync.config import ResolvedConfig, SyncSettings
from innersync.core import HistoryLog, RunState, SyncOrchestrator
from innersync.main import SyncApp, build_parser, main

from test_orchestrator import FakeClient, FakeExporter, FakeWatcher


def create_app(tmp_path) -> SyncApp:
    config = ResolvedConfig.from_settings(SyncSettings(base_dir=str(tmp_path), debounce_ms=100))
    orchestrator = SyncOrchestrator(
        config,
        exporter=FakeExporter(tmp_path / "generated"),
        client=FakeClient(),
        history=HistoryLog(None),
        watcher_factory=FakeWatcher
    )
    return SyncApp(config, orchestrator=orchestrator)


class TestStatusServer:
    """HTTP status surface."""

    @pytest.mark.asyncio
    async def test_health_reflects_running_state(self, tmp_path):
        app = create_app(tmp_path)

        async with test_utils.TestClient(test_utils.TestServer(app.create_web_app())) as client:
            response = await client.get('/health')
            assert response.status == 503

            await app.startup()
            response = await client.get('/health')
            data = await response.json()

            assert response.status == 200
            assert data["status"] == "healthy"
            assert data["version"] == app.settings.version

        await app.shutdown()

    @pytest.mark.asyncio
    async def test_status_and_history(self, tmp_path):
        app = create_app(tmp_path)
        await app.startup()

        async with test_utils.TestClient(test_utils.TestServer(app.create_web_app())) as client:
            status = await (await client.get('/status')).json()
            history = await (await client.get('/history')).json()

        assert status["state"] == "idle"
        assert status["paused"] is False
        assert status["last_result"]["trigger"] == "startup sync"
        assert history[0]["reason"] == "Startup Sync"
        await app.shutdown()

    @pytest.mark.asyncio
    async def test_sync_pause_and_resume(self, tmp_path):
        app = create_app(tmp_path)
        await app.startup()

        async with test_utils.TestClient(test_utils.TestServer(app.create_web_app())) as client:
            response = await client.post('/sync')
            data = await response.json()
            assert response.status == 200
            assert data["result"]["status"] == "success"
            assert data["result"]["trigger"] == "manual trigger"

            paused = await (await client.post('/pause')).json()
            assert paused["paused"] is True

            response = await client.post('/sync')
            data = await response.json()
            assert response.status == 202
            assert data["accepted"] is False

            resumed = await (await client.post('/resume')).json()
            assert resumed["paused"] is False

        assert len(app.orchestrator.history) == 2
        await app.shutdown()


class TestSyncApp:
    """Application lifecycle."""

    @pytest.mark.asyncio
    async def test_run_until_stop_requested(self, tmp_path):
        app = create_app(tmp_path)
        task = asyncio.create_task(app.run())

        for _ in range(200):
            if app.running and app.orchestrator.last_result is not None:
                break
            await asyncio.sleep(0.01)

        app.request_stop()
        await task

        assert not app.running
        assert app.orchestrator.state == RunState.STOPPED


class TestCommandLine:
    """Argument parsing and one-shot commands."""

    def test_parser(self):
        args = build_parser().parse_args(["run", "--status-port", "8085", "--config", "config.yaml"])

        assert args.command == "run"
        assert args.status_port == 8085
        assert args.config == "config.yaml"

    def test_login_requires_credentials(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["login", "--email", "admin@school.test"])

    @pytest.mark.asyncio
    async def test_generate_command(self, tmp_path, sample_tfx, monkeypatch):
        monkeypatch.chdir(tmp_path)

        exit_code = await main(["generate", "--base-dir", str(tmp_path), "--output", "export"])

        assert exit_code == 0
        assert (tmp_path / "export" / "StudentCourse.txt").exists()
        assert (tmp_path / "export" / "Timetable.txt").exists()

    @pytest.mark.asyncio
    async def test_generate_reports_invalid_document(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "Broken.tfx").write_text("{")

        exit_code = await main(["generate", "--base-dir", str(tmp_path), "--tfx", "Broken.tfx"])

        assert exit_code == 1

    @pytest.mark.asyncio
    async def test_logout_command_clears_token(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        data_dir = tmp_path / "data"
        data_dir.mkdir()
        (data_dir / "settings.json").write_text(json.dumps({
            "apiToken": "stored-token",
            "login": {"email": "admin@school.test", "password": "secret", "remember": True},
        }))

        exit_code = await main(["logout", "--data-dir", str(data_dir)])

        saved = json.loads((data_dir / "settings.json").read_text())
        assert exit_code == 0
        assert saved["api_token"] is None
        assert saved["login"]["password"] == ""
        assert saved["login"]["email"] == "admin@school.test"
