"""Tests for the HTTP API."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from clawdeploy import main
from clawdeploy.control_plane import DeployRecord, JobOrchestrator
from clawdeploy.errors import ProvisionError, RemoteShellError


class StubSequencer:
    def __init__(self, error=None, hang=False):
        self.error = error
        self.hang = hang
        self.params = []

    async def run(self, params, progress, deploy_id=None):
        self.params.append(params)
        progress.step(1, "Resolving parameters...")
        if self.hang:
            await asyncio.sleep(3600)
        if self.error is not None:
            raise self.error
        return DeployRecord(
            id=deploy_id,
            droplet_id=42,
            hostname="openclaw-abc",
            ip_address="203.0.113.10",
            region="sgp1",
            size="s-2vcpu-4gb",
            ssh_key_path="/keys/k",
            ssh_key_fingerprint="3b:16:bf",
        )


class StubGateway:
    def __init__(self, error=None):
        self.error = error
        self.commands = []

    async def run_as_service_user(self, address, key_path, command):
        self.commands.append((address, command))
        if self.error is not None:
            raise self.error
        return "gateway running\n"


@pytest.fixture
def api(settings, monkeypatch):
    """TestClient with temp-dir settings and an orchestrator around a stub sequencer."""
    sequencer = StubSequencer()
    monkeypatch.setattr(main, "settings", settings)
    monkeypatch.setattr(
        main,
        "build_orchestrator",
        lambda cfg, gw: JobOrchestrator(sequencer, max_concurrent_jobs=cfg.max_concurrent_jobs),
    )
    with TestClient(main.app) as client:
        client.sequencer = sequencer
        yield client
    main.app.dependency_overrides.clear()


def _events(body):
    """Split an SSE body into messages, rejoining multi-line data fields."""
    messages = []
    for frame in body.split("\n\n"):
        if not frame:
            continue
        lines = [line[len("data: "):] for line in frame.split("\n") if line.startswith("data: ")]
        messages.append("\n".join(lines))
    return messages


def test_health(api):
    response = api.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_not_ready_without_lifespan():
    client = TestClient(main.app)

    response = client.post("/api/deploy", json={"do_token": "t", "anthropic_key": "k"})

    assert response.status_code == 503


class TestDeploy:
    def test_submit_and_stream(self, api):
        response = api.post(
            "/api/deploy",
            json={"do_token": "dop_v1_x", "anthropic_key": "sk-ant-api03-x", "backup": "none", "region": ""},
        )
        assert response.status_code == 200
        deploy_id = response.json()["deploy_id"]

        events = api.get(f"/api/deploy/{deploy_id}/events")

        assert events.headers["content-type"].startswith("text/event-stream")
        messages = _events(events.text)
        assert messages[0] == "\n[Step 1/16] Resolving parameters..."
        assert messages[-1] == "DEPLOY_COMPLETE:203.0.113.10:/keys/k:openclaw-abc"

        params = api.sequencer.params[0]
        assert params.backup is None
        assert params.region is None

    def test_second_subscriber_gets_empty_stream(self, api):
        deploy_id = api.post("/api/deploy", json={"do_token": "t", "anthropic_key": "k"}).json()["deploy_id"]

        first = api.get(f"/api/deploy/{deploy_id}/events")
        second = api.get(f"/api/deploy/{deploy_id}/events")

        assert _events(first.text)
        assert second.status_code == 200
        assert second.text == ""

    def test_failed_deploy(self, api):
        api.sequencer.error = ProvisionError("docker", "daemon restart failed")
        deploy_id = api.post("/api/deploy", json={"do_token": "t", "anthropic_key": "k"}).json()["deploy_id"]

        messages = _events(api.get(f"/api/deploy/{deploy_id}/events").text)
        status = api.get(f"/api/deploy/{deploy_id}").json()

        assert messages[-1] == "DEPLOY_ERROR:Provision error (docker): daemon restart failed"
        assert status["status"] == "failed"
        assert "daemon restart failed" in status["error"]

    def test_status_of_completed_deploy(self, api):
        deploy_id = api.post("/api/deploy", json={"do_token": "t", "anthropic_key": "k"}).json()["deploy_id"]
        api.get(f"/api/deploy/{deploy_id}/events")

        status = api.get(f"/api/deploy/{deploy_id}").json()

        assert status["status"] == "completed"
        assert status["record"]["ip_address"] == "203.0.113.10"

    def test_unknown_deploy(self, api):
        assert api.get("/api/deploy/nope").status_code == 404
        assert api.get("/api/deploy/nope/events").text == ""

    def test_capacity(self, api, settings):
        api.sequencer.hang = True
        for _ in range(settings.max_concurrent_jobs):
            assert api.post("/api/deploy", json={"do_token": "t", "anthropic_key": "k"}).status_code == 200

        response = api.post("/api/deploy", json={"do_token": "t", "anthropic_key": "k"})

        assert response.status_code == 429

    def test_request_requires_credentials(self, api):
        assert api.post("/api/deploy", json={"do_token": "t"}).status_code == 422


def test_list_backups(api, settings):
    settings.backups_dir.mkdir(parents=True, exist_ok=True)
    (settings.backups_dir / "openclaw_backup_20260101_000000.tar.gz").write_bytes(b"x" * 10)

    entries = api.get("/api/backups").json()

    assert [(e["name"], e["size"]) for e in entries] == [("openclaw_backup_20260101_000000.tar.gz", 10)]


class TestRemoteControl:
    @pytest.fixture
    def key_file(self, tmp_path):
        path = tmp_path / "clawdeploy_key"
        path.write_text("key")
        return path

    def _use(self, gateway):
        main.app.dependency_overrides[main.get_gateway] = lambda: gateway
        return gateway

    def test_status(self, api, key_file):
        gateway = self._use(StubGateway())

        response = api.post("/api/remote/status", json={"ip": "203.0.113.10", "key_path": str(key_file)})

        assert response.status_code == 200
        assert response.json() == {"ip": "203.0.113.10", "output": "gateway running\n"}
        assert "openclaw status" in gateway.commands[0][1]

    def test_pairing_approve(self, api, key_file):
        gateway = self._use(StubGateway())

        response = api.post(
            "/api/remote/pairing/approve",
            json={"ip": "203.0.113.10", "key_path": str(key_file), "channel": "telegram", "code": "AB12-cd"},
        )

        assert response.status_code == 200
        assert gateway.commands[0][1].endswith("openclaw pairing approve telegram AB12-cd")

    def test_pairing_rejects_shell_metacharacters(self, api, key_file):
        gateway = self._use(StubGateway())

        response = api.post(
            "/api/remote/pairing/approve",
            json={"ip": "203.0.113.10", "key_path": str(key_file), "channel": "telegram", "code": "x; rm -rf /"},
        )

        assert response.status_code == 400
        assert gateway.commands == []

    def test_invalid_ip(self, api, key_file):
        self._use(StubGateway())

        response = api.post("/api/remote/status", json={"ip": "not-an-ip", "key_path": str(key_file)})

        assert response.status_code == 400

    def test_missing_key(self, api, tmp_path):
        self._use(StubGateway())

        response = api.post("/api/remote/status", json={"ip": "203.0.113.10", "key_path": str(tmp_path / "nope")})

        assert response.status_code == 400

    def test_remote_failure_is_bad_gateway(self, api, key_file):
        self._use(StubGateway(error=RemoteShellError("connect to 203.0.113.10: timed out")))

        response = api.post("/api/remote/status", json={"ip": "203.0.113.10", "key_path": str(key_file)})

        assert response.status_code == 502
        assert "timed out" in response.json()["detail"]
