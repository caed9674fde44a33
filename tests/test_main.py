import asyncio
import json
import os
import signal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from healthwatch import __main__ as entry
from healthwatch.config import Config
from healthwatch.main import app, build_monitor
from healthwatch.monitor import INTERRUPT_MESSAGE, SHUTDOWN_MESSAGE, Phase
from healthwatch.state import HealthState, ServiceStatus, StateStore


def _messages(monitor) -> list[str]:
    return [e.message for e in monitor.events.recent(1000)]


class TestRunDaemon:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("sig", "message"),
        [(signal.SIGTERM, SHUTDOWN_MESSAGE), (signal.SIGINT, INTERRUPT_MESSAGE)],
    )
    async def test_signal_saves_state_and_exits_cleanly(
        self, make_monitor, make_service, state_path: Path, sig, message
    ) -> None:
        def probe_then_signal():
            os.kill(os.getpid(), sig)
            return True

        monitor = make_monitor([make_service("svc1", alive=probe_then_signal)], interval=3600)

        exit_code = await asyncio.wait_for(entry.run_daemon(monitor), timeout=5)

        assert exit_code == 0
        assert monitor.phase == Phase.STOPPED
        assert _messages(monitor)[-1] == message

        persisted = StateStore(state_path)
        try:
            state = persisted.load()
        finally:
            persisted.close()
        assert state.checks_performed == 1
        assert state.status_by_service == {"svc1": ServiceStatus.HEALTHY}


@pytest.mark.usefixtures("restore_logging")
class TestMain:
    def _config(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path, **overrides) -> Config:
        cfg = Config(
            data_dir=tmp_path,
            state_path=tmp_path / "health-state.db",
            event_log=tmp_path / "health.log",
            services_file=tmp_path / "services.json",
        )
        for key, value in overrides.items():
            setattr(cfg, key, value)
        monkeypatch.setattr(entry, "config", cfg)
        return cfg

    def test_missing_registry_is_fatal(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        self._config(monkeypatch, tmp_path)

        assert entry.main() == 1

    def test_unopenable_event_log_is_fatal(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        log_dir = tmp_path / "logs"
        log_dir.mkdir()
        self._config(monkeypatch, tmp_path, event_log=log_dir)

        assert entry.main() == 1

    def test_runs_daemon_with_loaded_registry(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        cfg = self._config(monkeypatch, tmp_path)
        cfg.services_file.write_text(json.dumps([{"name": "svc1", "probe": "echo up", "start": "true"}]))
        seen = {}

        async def fake_run_daemon(monitor):
            seen["monitor"] = monitor
            return 0

        monkeypatch.setattr(entry, "run_daemon", fake_run_daemon)

        assert entry.main() == 0
        assert [d.name for d in seen["monitor"].registry] == ["svc1"]
        assert seen["monitor"].store.path == cfg.state_path


class TestConfig:
    def test_derived_paths(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("HEALTHWATCH_STATE_FILE", "HEALTHWATCH_EVENT_LOG", "HEALTHWATCH_SERVICES_FILE"):
            monkeypatch.delenv(name, raising=False)

        cfg = Config(data_dir=tmp_path)

        assert cfg.state_path == tmp_path / "health-state.db"
        assert cfg.event_log == tmp_path / "health.log"
        assert cfg.services_file == tmp_path / "services.json"

    def test_path_overrides_from_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HEALTHWATCH_STATE_FILE", str(tmp_path / "elsewhere" / "state.db"))

        cfg = Config(data_dir=tmp_path)
        cfg.ensure_dirs()

        assert cfg.state_path == tmp_path / "elsewhere" / "state.db"
        assert cfg.state_path.parent.is_dir()

    def test_build_monitor_uses_config(self, tmp_path: Path, make_service) -> None:
        cfg = Config(data_dir=tmp_path, state_path=tmp_path / "s.db", check_interval=42, probe_timeout=3, start_timeout=7)

        monitor = build_monitor((make_service("svc1"),), cfg)

        assert monitor.interval == 42
        assert monitor.checker.timeout == 3
        assert monitor.invoker.timeout == 7
        assert monitor.store.path == tmp_path / "s.db"


@pytest.fixture
def api(make_monitor, make_service):
    monitor = make_monitor(
        [
            make_service("scanner-daemon", alive=False, critical=True),
            make_service("alert-tracker"),
        ]
    )
    app.state.monitor = monitor
    yield monitor
    del app.state.monitor


class TestApi:
    def _sweep(self, monitor) -> None:
        monitor.state = HealthState()
        monitor.last_sweep = asyncio.run(monitor.sweep(monitor.state))

    def test_status(self, api) -> None:
        self._sweep(api)
        client = TestClient(app)

        data = client.get("/api/status").json()

        assert data["checks_performed"] == 1
        assert data["total"] == 2
        assert data["healthy"] == 1
        assert data["all_healthy"] is False
        assert data["total_restarts"] == 1
        assert data["phase"] == "starting"

    def test_list_services(self, api) -> None:
        self._sweep(api)
        client = TestClient(app)

        services = client.get("/api/services").json()

        assert [s["name"] for s in services] == ["scanner-daemon", "alert-tracker"]
        assert services[0]["status"] == "restarted"
        assert services[0]["restart_count"] == 1
        assert services[0]["critical"] is True
        assert services[1]["status"] == "healthy"
        assert services[1]["restart_count"] == 0

    def test_service_detail_includes_restart_history(self, api) -> None:
        self._sweep(api)
        client = TestClient(app)

        data = client.get("/api/services/scanner-daemon").json()

        assert data["status"] == "restarted"
        assert len(data["recent_restarts"]) == 1
        assert data["recent_restarts"][0]["launched"] is True

    def test_unknown_service(self, api) -> None:
        client = TestClient(app)

        response = client.get("/api/services/nope")

        assert response.status_code == 404

    def test_events(self, api) -> None:
        self._sweep(api)
        client = TestClient(app)

        data = client.get("/api/events", params={"limit": 2}).json()

        assert data["total"] == 2
        assert data["events"][-1]["message"].startswith("Uptime:")

    def test_lifespan_runs_monitor(self, api) -> None:
        with TestClient(app) as client:
            assert client.get("/api/status").status_code == 200

        assert api.phase == Phase.STOPPED
