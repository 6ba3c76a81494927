"""Root test configuration."""

import logging
from pathlib import Path
from typing import List, Optional, Tuple

import pytest
import structlog

from clawdeploy.config import DeploySettings
from clawdeploy.errors import RemoteShellError


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


class FakeGateway:
    """
    In-memory stand-in for RemoteGateway.

    Records every command. A command containing ``fail_on`` raises
    RemoteShellError; the cloud-init probe and version checks answer like
    a healthy droplet.
    """

    def __init__(self, fail_on: Optional[str] = None):
        self.fail_on = fail_on
        self.commands: List[Tuple[str, str, str]] = []
        self.uploads: List[Tuple[str, Path, str]] = []
        self.downloads: List[Tuple[str, str, Path]] = []

    def _answer(self, command: str) -> str:
        if self.fail_on and self.fail_on in command:
            raise RemoteShellError("Command exited with status 1: boom", exit_status=1, stderr="boom")
        if "test -f" in command:
            return "done\n"
        if "--version" in command:
            return "2026.1.0\n"
        return "ok\n"

    async def run(self, address, key_path, command):
        self.commands.append(("root", address, command))
        return self._answer(command)

    async def run_as_service_user(self, address, key_path, command):
        self.commands.append(("openclaw", address, command))
        return self._answer(command)

    async def upload(self, address, key_path, local_path, remote_path):
        self.uploads.append((address, Path(local_path), remote_path))

    async def download(self, address, key_path, remote_path, local_path):
        self.downloads.append((address, remote_path, Path(local_path)))
        Path(local_path).write_bytes(b"archive")

    def shutdown(self):
        pass

    def ran(self, fragment: str) -> bool:
        return any(fragment in command for _, _, command in self.commands)


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def settings(tmp_path):
    """Settings rooted in a temporary directory with near-instant readiness waits."""
    return DeploySettings(
        _env_file=None,
        app_dir=tmp_path / "app",
        active_poll_interval=0,
        active_timeout=0.05,
        ssh_poll_interval=0,
        ssh_timeout=0.05,
        cloud_init_poll_interval=0,
        cloud_init_timeout=0.05,
    )
