"""Tests for the readiness poller."""

import asyncio
import time
from pathlib import Path

import pytest

from clawdeploy.errors import ProviderAPIError, ReadinessTimeoutError, RemoteShellError
from clawdeploy.providers import InstanceDescriptor
from clawdeploy.readiness import wait_for_active, wait_for_cloud_init, wait_for_ssh, wait_until


def _droplet(status, ip=None):
    networks = {"v4": [{"ip_address": ip, "type": "public"}]} if ip else {"v4": []}
    return InstanceDescriptor.model_validate(
        {"id": 7, "name": "openclaw-test", "status": status, "networks": networks,
         "region": {"slug": "sgp1"}}
    )


class FakeProvider:
    def __init__(self, sequence):
        self.sequence = list(sequence)
        self.calls = 0

    async def get_droplet(self, droplet_id):
        self.calls += 1
        item = self.sequence.pop(0) if len(self.sequence) > 1 else self.sequence[0]
        if isinstance(item, Exception):
            raise item
        return item


@pytest.mark.asyncio
class TestWaitUntil:
    async def test_returns_first_truthy_result(self):
        results = iter([None, False, "ready"])

        async def probe():
            return next(results)

        assert await wait_until(probe, interval=0, timeout=5, condition="thing") == "ready"

    async def test_times_out_naming_condition(self):
        calls = []

        async def probe():
            calls.append(1)
            return False

        with pytest.raises(ReadinessTimeoutError) as exc_info:
            await wait_until(probe, interval=0.01, timeout=0.03, condition="the thing")

        assert exc_info.value.condition == "the thing"
        assert "Timeout waiting for the thing" in exc_info.value.message
        assert len(calls) >= 1

    async def test_stops_polling_after_success(self):
        calls = []

        async def probe():
            calls.append(1)
            return len(calls) == 3

        assert await wait_until(probe, interval=0, timeout=5, condition="thing") is True
        assert len(calls) == 3

    async def test_timeout_fires_between_limit_and_one_interval_later(self):
        async def probe():
            return False

        start = time.monotonic()
        with pytest.raises(ReadinessTimeoutError):
            await wait_until(probe, interval=0.02, timeout=0.05, condition="thing")
        elapsed = time.monotonic() - start

        assert 0.05 <= elapsed <= 0.05 + 0.02 + 0.05

    async def test_hung_probe_is_cut_off_at_deadline(self):
        cancelled = []

        async def probe():
            try:
                await asyncio.sleep(1.0)
            except asyncio.CancelledError:
                cancelled.append(1)
                raise
            return False

        start = time.monotonic()
        with pytest.raises(ReadinessTimeoutError) as exc_info:
            await wait_until(probe, interval=0.05, timeout=0.1, condition="the thing")
        elapsed = time.monotonic() - start

        assert 0.1 <= elapsed <= 0.1 + 0.05 + 0.1
        assert exc_info.value.condition == "the thing"
        assert cancelled == [1]

    async def test_probe_errors_propagate(self):
        async def probe():
            raise ProviderAPIError("Get droplet", 500, "oops")

        with pytest.raises(ProviderAPIError):
            await wait_until(probe, interval=0, timeout=5, condition="thing")


@pytest.mark.asyncio
class TestWaitForActive:
    async def test_waits_for_status_and_address(self):
        provider = FakeProvider([
            _droplet("new"),
            _droplet("active"),
            _droplet("active", "203.0.113.10"),
        ])

        droplet = await wait_for_active(provider, 7, interval=0, timeout=5)

        assert droplet.public_ip == "203.0.113.10"
        assert provider.calls == 3

    async def test_timeout(self):
        provider = FakeProvider([_droplet("new")])

        with pytest.raises(ReadinessTimeoutError) as exc_info:
            await wait_for_active(provider, 7, interval=0, timeout=0.02)

        assert exc_info.value.condition == "droplet to become active"


@pytest.mark.asyncio
class TestShellWaits:
    async def test_ssh_failures_count_as_not_ready(self):
        attempts = []

        class FlakyGateway:
            async def run(self, address, key_path, command):
                attempts.append(command)
                if len(attempts) < 3:
                    raise RemoteShellError("connection refused")
                return "ok\n"

        await wait_for_ssh(FlakyGateway(), "203.0.113.10", Path("/k"), interval=0, timeout=5)

        assert attempts == ["echo ok"] * 3

    async def test_stalled_ssh_command_times_out(self):
        class Stalled:
            async def run(self, address, key_path, command):
                await asyncio.sleep(3600)

        start = time.monotonic()
        with pytest.raises(ReadinessTimeoutError) as exc_info:
            await wait_for_ssh(Stalled(), "203.0.113.10", Path("/k"), interval=0.01, timeout=0.05)

        assert exc_info.value.condition == "SSH to accept connections"
        assert time.monotonic() - start < 1.0

    async def test_cloud_init_requires_sentinel(self):
        class NotYet:
            async def run(self, address, key_path, command):
                return "\n"

        with pytest.raises(ReadinessTimeoutError) as exc_info:
            await wait_for_cloud_init(NotYet(), "203.0.113.10", Path("/k"), interval=0, timeout=0.02)

        assert exc_info.value.condition == "cloud-init to complete"

    async def test_cloud_init_done(self, fake_gateway):
        await wait_for_cloud_init(fake_gateway, "203.0.113.10", Path("/k"), interval=0, timeout=5)

        assert fake_gateway.ran("test -f /root/.clawdeploy_cloud_init_done")
