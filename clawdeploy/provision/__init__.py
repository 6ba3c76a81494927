"""
Provisioning Pipeline

Ordered SSH configuration modules run after cloud-init (steps 9-14). The
pipeline stops at the first failing module and reports it by name; no
module is retried.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import structlog

from ..errors import DeployError, ProvisionError
from ..progress import ProgressSink
from . import docker, firewall, nodejs, openclaw, tailscale, user
from .secrets import filter_session_token, has_value, render_env_file

logger = structlog.get_logger(__name__)

__all__ = [
    "PIPELINE",
    "ProvisionContext",
    "ProvisionModule",
    "ProvisionOptions",
    "filter_session_token",
    "has_value",
    "render_env_file",
    "run_pipeline",
]


@dataclass
class ProvisionOptions:
    """Remote-side secrets and toggles. Secret fields are kept out of repr."""

    public_key_openssh: str
    anthropic_key: str = field(default="", repr=False)
    openai_key: str = field(default="", repr=False)
    gemini_key: str = field(default="", repr=False)
    whatsapp_phone_number: str = field(default="", repr=False)
    telegram_bot_token: str = field(default="", repr=False)
    tailscale: bool = False


@dataclass
class ProvisionContext:
    """What a module needs: where to run, how, and with which options."""

    gateway: object
    address: str
    key_path: Path
    options: ProvisionOptions
    progress: ProgressSink
    module: str = ""

    async def root(self, command: str, phase: Optional[str] = None) -> str:
        try:
            return await self.gateway.run(self.address, self.key_path, command)
        except DeployError as e:
            raise ProvisionError(self.module, e.message, phase) from e

    async def as_service_user(self, command: str, phase: Optional[str] = None) -> str:
        try:
            return await self.gateway.run_as_service_user(self.address, self.key_path, command)
        except DeployError as e:
            raise ProvisionError(self.module, e.message, phase) from e


@dataclass(frozen=True)
class ProvisionModule:
    name: str
    step: int
    title: str
    done: str
    run: Callable[[ProvisionContext], Awaitable[None]]
    enabled: Callable[[ProvisionOptions], bool] = lambda options: True
    skipped: str = ""


PIPELINE: List[ProvisionModule] = [
    ProvisionModule(
        name="user",
        step=9,
        title="Creating openclaw user and configuring access...",
        done="User 'openclaw' created with SSH access",
        run=user.provision,
    ),
    ProvisionModule(
        name="firewall",
        step=10,
        title="Hardening firewall (fail2ban, UFW, Docker isolation)...",
        done="Firewall hardened",
        run=firewall.provision,
    ),
    ProvisionModule(
        name="docker",
        step=11,
        title="Configuring Docker daemon...",
        done="Docker daemon configured",
        run=docker.provision,
    ),
    ProvisionModule(
        name="nodejs",
        step=12,
        title="Setting up Node.js/pnpm...",
        done="pnpm configured",
        run=nodejs.provision,
    ),
    ProvisionModule(
        name="openclaw",
        step=13,
        title="Installing OpenClaw...",
        done="OpenClaw installed",
        run=openclaw.provision,
    ),
    ProvisionModule(
        name="tailscale",
        step=14,
        title="Installing Tailscale VPN...",
        done="Tailscale installed (run `sudo tailscale up` on server to connect)",
        run=tailscale.provision,
        enabled=lambda options: options.tailscale,
        skipped="Tailscale skipped (not enabled)",
    ),
]


async def run_pipeline(
    gateway,
    address: str,
    key_path: Path,
    options: ProvisionOptions,
    progress: ProgressSink,
    modules: Optional[List[ProvisionModule]] = None,
) -> None:
    """
    Run provisioning modules strictly in order.

    Raises:
        ProvisionError: naming the first module that failed. Later modules
            are not started.
    """
    ctx = ProvisionContext(
        gateway=gateway, address=address, key_path=key_path, options=options, progress=progress
    )
    for module in modules if modules is not None else PIPELINE:
        if not module.enabled(options):
            progress.step(module.step, module.skipped)
            continue

        progress.step(module.step, module.title)
        ctx.module = module.name
        logger.info("provision_module_started", module=module.name, address=address)
        try:
            await module.run(ctx)
        except ProvisionError:
            logger.error("provision_module_failed", module=module.name, address=address)
            raise
        except DeployError as e:
            logger.error("provision_module_failed", module=module.name, address=address)
            raise ProvisionError(module.name, e.message) from e
        progress.detail(module.done)
