"""
Deploy API

FastAPI application that runs deploy jobs concurrently and streams each
job's progress to a single subscriber over server-sent events.
"""
from __future__ import annotations

import ipaddress
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, List

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from . import __version__
from .backups import list_backup_files
from .config import DeploySettings
from .control_plane.job_orchestrator import JobOrchestrator, RegistryFullError
from .control_plane.models import (
    BackupEntry,
    DeployRequest,
    DeployResponse,
    PairingApproval,
    RemoteCommandResult,
    RemoteTarget,
)
from .control_plane.sequencer import DeployParams, DeploySequencer
from .errors import DeployError
from .logging import setup_logging
from .progress import ProgressChannel
from .provision.service import pairing_approve_command, remote_status_command
from .record_store import DeployRecordStore
from .ssh import RemoteGateway

_SLUG_RE = re.compile(r"^[A-Za-z0-9_-]+$")

# Initialize settings and logging
settings = DeploySettings()
setup_logging(settings.log_level)
logger = structlog.get_logger(__name__)

# Created in lifespan
gateway: RemoteGateway | None = None
orchestrator: JobOrchestrator | None = None


def build_orchestrator(settings: DeploySettings, gateway: RemoteGateway) -> JobOrchestrator:
    sequencer = DeploySequencer(settings, gateway, DeployRecordStore(settings.deploys_dir))
    return JobOrchestrator(sequencer, max_concurrent_jobs=settings.max_concurrent_jobs)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan: startup and shutdown.

    - Create local directories
    - Create the SSH gateway and orchestrator
    - Cancel in-flight jobs on shutdown
    """
    global gateway, orchestrator

    logger.info("deploy_api_starting")
    settings.ensure_dirs()
    gateway = RemoteGateway(
        max_workers=settings.ssh_workers, command_timeout=settings.ssh_command_timeout
    )
    orchestrator = build_orchestrator(settings, gateway)
    logger.info("deploy_api_ready", max_concurrent_jobs=settings.max_concurrent_jobs)

    yield

    logger.info("deploy_api_shutting_down")
    if orchestrator:
        await orchestrator.shutdown()
    if gateway:
        gateway.shutdown()
    orchestrator = None
    gateway = None
    logger.info("deploy_api_stopped")


app = FastAPI(
    title="clawdeploy API",
    description="""
    Deploy OpenClaw to DigitalOcean.

    ## Features

    * **Deploys**: Submit a deploy and follow its progress as server-sent events
    * **Backups**: List local backup archives available for restore
    * **Remote control**: Gateway status and pairing approval on a deployed droplet

    The API binds to loopback by default and has no authentication.
    """,
    version=__version__,
    lifespan=lifespan,
)


def get_orchestrator() -> JobOrchestrator:
    """Dependency to get orchestrator instance."""
    if orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Orchestrator not initialized",
        )
    return orchestrator


def get_gateway() -> RemoteGateway:
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="SSH gateway not initialized",
        )
    return gateway


def get_settings() -> DeploySettings:
    return settings


def _sse_frame(message: str) -> str:
    """One SSE event; each line of the message becomes a data field."""
    return "".join(f"data: {line}\n" for line in message.split("\n")) + "\n"


async def _event_stream(channel: ProgressChannel) -> AsyncIterator[str]:
    try:
        async for message in channel:
            yield _sse_frame(message)
    finally:
        # Subscriber gone; the job keeps running and stops sending.
        channel.drop()


def _validate_target(target: RemoteTarget) -> Path:
    try:
        ipaddress.ip_address(target.ip)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid IP address: {target.ip}",
        )
    key_path = Path(target.key_path).expanduser()
    if not key_path.is_file():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"SSH key not found: {key_path}",
        )
    return key_path


async def _run_remote(gw: RemoteGateway, ip: str, key_path: Path, command: str) -> RemoteCommandResult:
    try:
        output = await gw.run_as_service_user(ip, key_path, command)
    except DeployError as e:
        logger.warning("remote_command_failed", ip=ip, kind=e.kind.value, error=e.message)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return RemoteCommandResult(ip=ip, output=output)


# Health check
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "clawdeploy",
        "max_concurrent_jobs": settings.max_concurrent_jobs,
    }


# Root endpoint
@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "clawdeploy",
        "version": __version__,
        "status": "operational",
    }


@app.post("/api/deploy", response_model=DeployResponse)
async def start_deploy(
    request: DeployRequest,
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Start a deploy in the background.

    Returns:
        The deploy identifier; follow it at /api/deploy/{id}/events
    """
    try:
        deploy_id = await orch.create_job(DeployParams.from_request(request))
    except RegistryFullError as e:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=str(e))
    return DeployResponse(deploy_id=deploy_id)


@app.get("/api/deploy/{deploy_id}/events")
async def deploy_events(
    deploy_id: str,
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    """
    Progress of one deploy as server-sent events.

    Only the first subscriber receives events. Later subscribers, and
    subscribers to unknown deploys, get a stream that closes immediately.
    """
    channel = await orch.attach_stream(deploy_id)
    return StreamingResponse(
        _event_stream(channel),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.get("/api/deploy/{deploy_id}")
async def get_deploy_status(
    deploy_id: str,
    orch: JobOrchestrator = Depends(get_orchestrator),
):
    """Deploy status, plus the deploy record once completed."""
    status_info = await orch.get_job_status(deploy_id)
    if status_info is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Deploy {deploy_id} not found",
        )
    return status_info


@app.get("/api/backups", response_model=List[BackupEntry])
async def list_backups(cfg: DeploySettings = Depends(get_settings)):
    try:
        return list_backup_files(cfg.backups_dir)
    except DeployError as e:
        logger.warning("backup_listing_failed", error=e.message)
        return []


@app.post("/api/remote/status", response_model=RemoteCommandResult)
async def remote_status(
    target: RemoteTarget,
    gw: RemoteGateway = Depends(get_gateway),
):
    """Gateway status on a deployed droplet."""
    key_path = _validate_target(target)
    return await _run_remote(gw, target.ip, key_path, remote_status_command())


@app.post("/api/remote/pairing/approve", response_model=RemoteCommandResult)
async def approve_pairing(
    approval: PairingApproval,
    gw: RemoteGateway = Depends(get_gateway),
):
    """Approve a messaging channel pairing code on a deployed droplet."""
    for field_name in ("channel", "code"):
        if not _SLUG_RE.match(getattr(approval, field_name)):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid {field_name}: only letters, digits, '-' and '_' are allowed",
            )
    key_path = _validate_target(approval)
    return await _run_remote(
        gw, approval.ip, key_path, pairing_approve_command(approval.channel, approval.code)
    )


# For running directly with python -m
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "clawdeploy.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
