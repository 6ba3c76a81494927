"""
Deploy Sequencer

Drives one deploy through its sixteen fixed steps:

    resolve params -> key pair -> register key -> create droplet
    -> wait active / SSH / cloud-init -> [restore backup]
    -> provisioning pipeline -> start gateway [+ model failover]
    -> save DeployRecord

Failures before the droplet exists propagate unchanged. After creation the
droplet is never deleted: the failure is reported once, with connection
details, as a StepFailedError.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

from .. import cloud_init
from ..config import DEFAULT_REGION, DEFAULT_SIZE, GATEWAY_PORT, DeploySettings
from ..errors import (
    DeployError,
    LocalIOError,
    MissingParameterError,
    ProvisionError,
    StepFailedError,
)
from ..logging import bind_job
from ..progress import ProgressSink
from ..providers import DigitalOceanClient
from ..provision import PIPELINE, ProvisionOptions, has_value, run_pipeline
from ..provision.secrets import filter_session_token
from ..provision.service import (
    build_failover_command,
    build_start_command,
    failover_chain,
)
from ..readiness import wait_for_active, wait_for_cloud_init, wait_for_ssh
from ..ssh import generate_keypair
from .models import DeployRecord

if TYPE_CHECKING:
    from ..record_store import DeployRecordStore

REMOTE_BACKUP_ARCHIVE = "/tmp/openclaw_backup.tar.gz"

# Extract into /root/.openclaw; the user module later moves it under the service home.
RESTORE_COMMAND = (
    "mkdir -p /root/.openclaw && "
    "cd /tmp && tar xzf openclaw_backup.tar.gz && "
    "cp -a /tmp/openclaw/* /root/.openclaw/ 2>/dev/null; "
    "rm -rf /tmp/openclaw /tmp/openclaw_backup.tar.gz && "
    "echo ok"
)


async def _in_phase(module: str, phase: str, awaitable):
    """Await a remote call, naming the phase in any engine error it raises."""
    try:
        return await awaitable
    except ProvisionError:
        raise
    except DeployError as e:
        raise ProvisionError(module, e.message, phase) from e


@dataclass
class DeployParams:
    """Inputs for one deploy. Empty optional strings mean 'not provided'."""

    do_token: str = field(repr=False)
    anthropic_key: str = field(repr=False)
    openai_key: str = field(default="", repr=False)
    gemini_key: str = field(default="", repr=False)
    whatsapp_phone_number: str = field(default="", repr=False)
    telegram_bot_token: str = field(default="", repr=False)
    region: Optional[str] = None
    size: Optional[str] = None
    hostname: Optional[str] = None
    backup: Optional[Path] = None
    enable_backups: bool = False
    tailscale: bool = False

    @classmethod
    def from_settings(cls, settings: DeploySettings, **overrides: Any) -> "DeployParams":
        values = dict(
            do_token=settings.do_token.get_secret_value(),
            anthropic_key=settings.anthropic_api_key.get_secret_value(),
            openai_key=settings.openai_api_key.get_secret_value(),
            gemini_key=settings.gemini_api_key.get_secret_value(),
            whatsapp_phone_number=settings.whatsapp_phone_number,
            telegram_bot_token=settings.telegram_bot_token.get_secret_value(),
            region=settings.region,
            size=settings.size,
            hostname=settings.hostname_override,
            backup=settings.backup_path,
            enable_backups=settings.enable_backups,
            tailscale=settings.tailscale,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @classmethod
    def from_request(cls, request) -> "DeployParams":
        backup = request.backup.strip()
        return cls(
            do_token=request.do_token.get_secret_value(),
            anthropic_key=request.anthropic_key.get_secret_value(),
            openai_key=request.openai_key.get_secret_value(),
            gemini_key=request.gemini_key.get_secret_value(),
            whatsapp_phone_number=request.whatsapp_phone_number,
            telegram_bot_token=request.telegram_bot_token.get_secret_value(),
            region=request.region or None,
            size=request.size or None,
            hostname=request.hostname or None,
            backup=Path(backup).expanduser() if backup and backup != "none" else None,
            enable_backups=request.enable_backups,
            tailscale=request.tailscale,
        )


def _failed_step(step: int, error: Exception) -> int:
    """Pipeline failures are reported at the failing module's own step."""
    if isinstance(error, ProvisionError):
        for module in PIPELINE:
            if module.name == error.module:
                return module.step
    return step


@dataclass
class _Progressed:
    """Last step entered; names the step in post-creation failures."""

    step: int = 0


class DeploySequencer:
    """
    Runs the deploy phases in order against injected collaborators.

    The same instance is shared by concurrent jobs; it holds no per-job
    state.
    """

    def __init__(
        self,
        settings: DeploySettings,
        gateway,
        record_store: "DeployRecordStore",
        provider_factory: Callable[[str], Any] = DigitalOceanClient,
    ):
        self.settings = settings
        self.gateway = gateway
        self.record_store = record_store
        self.provider_factory = provider_factory

    async def run(
        self,
        params: DeployParams,
        progress: ProgressSink,
        deploy_id: Optional[str] = None,
    ) -> DeployRecord:
        """Run the full deploy. Returns the saved DeployRecord."""
        deploy_id = deploy_id or str(uuid.uuid4())
        log = bind_job(deploy_id)
        self.settings.ensure_dirs()

        # Step 1
        progress.step(1, "Resolving parameters...")
        if not has_value(params.do_token):
            raise MissingParameterError("do_token")
        if not has_value(params.anthropic_key):
            raise MissingParameterError("anthropic_key")
        region = params.region or DEFAULT_REGION
        size = params.size or DEFAULT_SIZE
        hostname = params.hostname or f"openclaw-{deploy_id[:8]}"
        progress.detail(f"Region:   {region}")
        progress.detail(f"Size:     {size}")
        progress.detail(f"Hostname: {hostname}")
        progress.detail(f"Backup:   {params.backup if params.backup else 'None'}")

        # Step 2
        progress.step(2, "Generating SSH key pair...")
        keypair = generate_keypair(self.settings.keys_dir, deploy_id)
        progress.detail(f"Key saved: {keypair.private_key_path}")

        async with self.provider_factory(params.do_token) as provider:
            # Step 3
            progress.step(3, "Uploading SSH public key to DigitalOcean...")
            key_info = await provider.upload_ssh_key(
                f"clawdeploy-{deploy_id[:8]}", keypair.public_key_openssh
            )
            progress.detail(f"Key ID: {key_info.id}, Fingerprint: {key_info.fingerprint}")

            # Step 4
            progress.step(4, "Creating droplet with cloud-init...")
            if not filter_session_token(params.anthropic_key):
                progress.detail("Warning: Anthropic key looks like an OAuth token (sk-ant-oat...).")
                progress.detail("   OAuth tokens are short-lived and break Claude Code.")
                progress.detail("   It will NOT be written to .env. Use a real API key (sk-ant-api...) instead.")
            droplet = await provider.create_droplet(
                hostname,
                region,
                size,
                key_info.id,
                cloud_init.generate(),
                params.enable_backups,
            )
            progress.detail(f"Droplet created: ID {droplet.id}")
            log.info("droplet_created", droplet_id=droplet.id, region=region, size=size)

            state = _Progressed(step=4)
            try:
                return await self._after_creation(
                    provider,
                    progress,
                    state,
                    params,
                    deploy_id=deploy_id,
                    droplet_id=droplet.id,
                    hostname=hostname,
                    region=region,
                    size=size,
                    key_path=keypair.private_key_path,
                    public_key=keypair.public_key_openssh,
                    fingerprint=key_info.fingerprint,
                )
            except Exception as e:
                failure = await self._report_post_creation_failure(
                    provider,
                    progress,
                    _failed_step(state.step, e),
                    droplet.id,
                    keypair.private_key_path,
                    e,
                )
                log.error("deploy_failed_after_creation", step=failure.step, droplet_id=droplet.id)
                raise failure from e

    async def _after_creation(
        self,
        provider,
        progress: ProgressSink,
        state: _Progressed,
        params: DeployParams,
        *,
        deploy_id: str,
        droplet_id: int,
        hostname: str,
        region: str,
        size: str,
        key_path: Path,
        public_key: str,
        fingerprint: str,
    ) -> DeployRecord:
        s = self.settings

        state.step = 5
        progress.step(5, "Waiting for droplet to become active...")
        droplet = await wait_for_active(
            provider, droplet_id, interval=s.active_poll_interval, timeout=s.active_timeout
        )
        ip = droplet.public_ip
        progress.step_done(5, f"Droplet active at {ip}")

        state.step = 6
        progress.step(6, "Waiting for SSH...")
        await wait_for_ssh(
            self.gateway, ip, key_path, interval=s.ssh_poll_interval, timeout=s.ssh_timeout
        )
        progress.step_done(6, "SSH ready")

        state.step = 7
        progress.step(7, "Waiting for cloud-init to finish (this may take a few minutes)...")
        await wait_for_cloud_init(
            self.gateway, ip, key_path,
            interval=s.cloud_init_poll_interval, timeout=s.cloud_init_timeout,
        )
        progress.step_done(7, "Cloud-init complete")

        state.step = 8
        backup_restored = None
        if params.backup is not None:
            progress.step(8, "Uploading and restoring backup...")
            if not params.backup.is_file():
                raise LocalIOError(f"Backup archive {params.backup} not found")
            await _in_phase("restore", "upload", self.gateway.upload(
                ip, key_path, params.backup, REMOTE_BACKUP_ARCHIVE
            ))
            await _in_phase("restore", "extract", self.gateway.run(ip, key_path, RESTORE_COMMAND))
            progress.step_done(8, "Backup uploaded and restored")
            backup_restored = str(params.backup)
        else:
            progress.step(8, "No backup to restore, skipping.")

        state.step = 9
        options = ProvisionOptions(
            public_key_openssh=public_key,
            anthropic_key=params.anthropic_key,
            openai_key=params.openai_key,
            gemini_key=params.gemini_key,
            whatsapp_phone_number=params.whatsapp_phone_number,
            telegram_bot_token=params.telegram_bot_token,
            tailscale=params.tailscale,
        )
        await run_pipeline(self.gateway, ip, key_path, options, progress)

        state.step = 15
        openai_enabled = has_value(params.openai_key)
        gemini_enabled = has_value(params.gemini_key)
        progress.step(15, "Starting OpenClaw gateway (user service)...")
        await _in_phase("gateway", "start", self.gateway.run_as_service_user(
            ip, key_path, build_start_command(openai_enabled, gemini_enabled)
        ))
        progress.step_done(15, "Gateway started (user service)")

        failover_cmd = build_failover_command(openai_enabled, gemini_enabled)
        if failover_cmd is not None:
            progress.step_done(15, "Configuring model failover chain...")
            await _in_phase("gateway", "failover", self.gateway.run_as_service_user(
                ip, key_path, failover_cmd
            ))
            chain = " -> ".join(failover_chain(openai_enabled, gemini_enabled))
            progress.step_done(15, f"Model failover configured ({chain})")

        state.step = 16
        progress.step(16, "Saving deploy record...")
        record = DeployRecord(
            id=deploy_id,
            droplet_id=droplet_id,
            hostname=hostname,
            ip_address=ip,
            region=region,
            size=size,
            ssh_key_path=str(key_path),
            ssh_key_fingerprint=fingerprint,
            backup_restored=backup_restored,
        )
        record_path = self.record_store.save(record)
        progress.detail(f"Saved: {record_path}")
        progress.step(16, "Done!")
        self._emit_summary(progress, record)
        return record

    async def _report_post_creation_failure(
        self,
        provider,
        progress: ProgressSink,
        step: int,
        droplet_id: int,
        key_path: Path,
        error: Exception,
    ) -> StepFailedError:
        """Re-fetch the droplet for connection details and build the enriched error."""
        ip = "unknown"
        try:
            droplet = await provider.get_droplet(droplet_id)
            ip = droplet.public_ip or "unknown"
        except DeployError as e:
            bind_job(str(droplet_id)).warning("diagnostic_refetch_failed", error=e.message)

        message = error.message if isinstance(error, DeployError) else str(error) or repr(error)
        progress.emit(f"\nDeploy failed: {message}", error=True)
        progress.emit("\nDroplet was NOT destroyed. Debug info:", error=True)
        progress.emit(f"  Droplet ID: {droplet_id}", error=True)
        progress.emit(f"  IP Address: {ip}", error=True)
        progress.emit(f"  SSH:        ssh -i {key_path} root@{ip}", error=True)
        return StepFailedError(
            step, message, instance_id=droplet_id, address=ip, key_path=str(key_path)
        )

    @staticmethod
    def _emit_summary(progress: ProgressSink, record: DeployRecord) -> None:
        key = record.ssh_key_path
        ip = record.ip_address
        progress.emit("")
        progress.emit("Deploy complete!")
        progress.detail(f"Hostname:  {record.hostname}")
        progress.detail(f"IP:        {ip}")
        progress.detail(f"Region:    {record.region}")
        progress.detail(f"Size:      {record.size}")
        progress.detail(f"SSH (root):     ssh -i {key} root@{ip}")
        progress.detail(f"SSH (openclaw): ssh -i {key} openclaw@{ip}")
        progress.detail(
            f"Gateway tunnel: ssh -i {key} -N -L {GATEWAY_PORT}:127.0.0.1:{GATEWAY_PORT} root@{ip}"
        )
        if record.backup_restored:
            progress.detail(f"Restored:  {record.backup_restored}")
