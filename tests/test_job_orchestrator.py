"""Tests for the job orchestrator (job registry)."""

import asyncio

import pytest

from clawdeploy.control_plane import DeployParams, DeployRecord, JobOrchestrator, JobStatus, RegistryFullError
from clawdeploy.errors import ProvisionError


def _record(deploy_id):
    return DeployRecord(
        id=deploy_id,
        droplet_id=42,
        hostname="openclaw-abc",
        ip_address="203.0.113.10",
        region="sgp1",
        size="s-2vcpu-4gb",
        ssh_key_path="/keys/clawdeploy_abc",
        ssh_key_fingerprint="3b:16:bf",
    )


class ScriptedSequencer:
    """Emits a few lines, optionally waits on a gate, then succeeds or fails."""

    def __init__(self, error=None, gate=None):
        self.error = error
        self.gate = gate

    async def run(self, params, progress, deploy_id=None):
        progress.step(1, "Resolving parameters...")
        if self.gate is not None:
            await self.gate.wait()
        progress.step(2, "Generating SSH key pair...")
        if self.error is not None:
            raise self.error
        return _record(deploy_id)


def _params():
    return DeployParams(do_token="tok", anthropic_key="sk-ant-api03-x")


async def _collect(channel):
    return [message async for message in channel]


async def _finish(orchestrator, job_id):
    for _ in range(100):
        status = await orchestrator.get_job_status(job_id)
        if status["status"] != JobStatus.RUNNING.value:
            return status
        await asyncio.sleep(0.01)
    raise AssertionError("job did not finish")


@pytest.mark.asyncio
class TestJobOrchestrator:
    async def test_success_stream_ends_with_complete_marker(self):
        orchestrator = JobOrchestrator(ScriptedSequencer())

        job_id = await orchestrator.create_job(_params())
        messages = await _collect(await orchestrator.attach_stream(job_id))

        assert messages[0] == "\n[Step 1/16] Resolving parameters..."
        assert messages[-1] == "DEPLOY_COMPLETE:203.0.113.10:/keys/clawdeploy_abc:openclaw-abc"
        status = await _finish(orchestrator, job_id)
        assert status["status"] == "completed"
        assert status["record"]["id"] == job_id

    async def test_failure_emits_single_error_marker(self):
        orchestrator = JobOrchestrator(ScriptedSequencer(error=ProvisionError("firewall", "boom", "ufw")))

        job_id = await orchestrator.create_job(_params())
        messages = await _collect(await orchestrator.attach_stream(job_id))

        terminal = [m for m in messages if m.startswith("DEPLOY_")]
        assert terminal == ["DEPLOY_ERROR:Provision error (firewall/ufw): boom"]
        assert messages[-1] == terminal[0]
        status = await _finish(orchestrator, job_id)
        assert status["status"] == "failed"
        assert status["record"] is None

    async def test_unexpected_exception_marks_failed(self):
        orchestrator = JobOrchestrator(ScriptedSequencer(error=RuntimeError("kaboom")))

        job_id = await orchestrator.create_job(_params())
        messages = await _collect(await orchestrator.attach_stream(job_id))

        assert messages[-1] == "DEPLOY_ERROR:kaboom"
        assert (await _finish(orchestrator, job_id))["status"] == "failed"

    async def test_second_attach_gets_closed_empty_stream(self):
        gate = asyncio.Event()
        orchestrator = JobOrchestrator(ScriptedSequencer(gate=gate))
        job_id = await orchestrator.create_job(_params())

        first = await orchestrator.attach_stream(job_id)
        second = await orchestrator.attach_stream(job_id)
        gate.set()

        assert await _collect(second) == []
        assert (await _collect(first))[-1].startswith("DEPLOY_COMPLETE:")

    async def test_concurrent_attach_single_winner(self):
        gate = asyncio.Event()
        orchestrator = JobOrchestrator(ScriptedSequencer(gate=gate))
        job_id = await orchestrator.create_job(_params())

        channels = await asyncio.gather(*(orchestrator.attach_stream(job_id) for _ in range(5)))
        gate.set()
        results = await asyncio.gather(*(_collect(c) for c in channels))

        assert sum(1 for r in results if r) == 1

    async def test_unknown_job(self):
        orchestrator = JobOrchestrator(ScriptedSequencer())

        assert await _collect(await orchestrator.attach_stream("nope")) == []
        assert await orchestrator.get_job_status("nope") is None

    async def test_late_subscriber_gets_buffered_events(self):
        orchestrator = JobOrchestrator(ScriptedSequencer())
        job_id = await orchestrator.create_job(_params())
        await _finish(orchestrator, job_id)

        messages = await _collect(await orchestrator.attach_stream(job_id))

        assert messages[-1].startswith("DEPLOY_COMPLETE:")

    async def test_status_changes_exactly_once(self):
        orchestrator = JobOrchestrator(ScriptedSequencer())
        job_id = await orchestrator.create_job(_params())
        await _finish(orchestrator, job_id)

        assert await orchestrator.mark_terminal(job_id, JobStatus.FAILED) is False
        assert (await orchestrator.get_job_status(job_id))["status"] == "completed"

    async def test_capacity_limit(self):
        gate = asyncio.Event()
        orchestrator = JobOrchestrator(ScriptedSequencer(gate=gate), max_concurrent_jobs=1)
        await orchestrator.create_job(_params())

        with pytest.raises(RegistryFullError):
            await orchestrator.create_job(_params())

        gate.set()
        await orchestrator.shutdown()

    async def test_shutdown_cancels_running_jobs(self):
        orchestrator = JobOrchestrator(ScriptedSequencer(gate=asyncio.Event()))
        job_id = await orchestrator.create_job(_params())
        channel = await orchestrator.attach_stream(job_id)

        await orchestrator.shutdown()

        messages = await _collect(channel)
        assert messages[-1].startswith("DEPLOY_ERROR:")
        assert (await orchestrator.get_job_status(job_id))["status"] == "failed"
        assert await orchestrator.running_count() == 0
