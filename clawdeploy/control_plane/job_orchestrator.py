"""
Job Orchestrator

In-process registry of deploy jobs for the HTTP front end. Each job runs
the sequencer in its own asyncio task and owns one progress channel that
exactly one subscriber may take.
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from ..errors import DeployError
from ..progress import ProgressChannel, ProgressSink, complete_marker, error_marker
from .models import DeployRecord, JobStatus
from .sequencer import DeployParams, DeploySequencer

logger = structlog.get_logger(__name__)


class RegistryFullError(RuntimeError):
    """Raised when max_concurrent_jobs jobs are already running."""


@dataclass
class DeployJob:
    id: str
    status: JobStatus = JobStatus.RUNNING
    channel: Optional[ProgressChannel] = None
    task: Optional[asyncio.Task] = None
    record: Optional[DeployRecord] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None


class JobOrchestrator:
    """
    Starts deploy jobs and hands out their progress streams.

    All map access goes through one lock. Taking a job's channel is a single
    remove-and-return under that lock, so two concurrent subscribers can
    never both receive it.
    """

    def __init__(self, sequencer: DeploySequencer, max_concurrent_jobs: int = 10):
        self.sequencer = sequencer
        self.max_concurrent_jobs = max_concurrent_jobs
        self._jobs: Dict[str, DeployJob] = {}
        self._lock = asyncio.Lock()

    async def create_job(self, params: DeployParams) -> str:
        """
        Register a job and start it in the background.

        Returns:
            The job identifier, which is also the deploy identifier

        Raises:
            RegistryFullError: if the running-job limit is reached
        """
        job_id = str(uuid.uuid4())
        channel = ProgressChannel()
        async with self._lock:
            running = sum(1 for j in self._jobs.values() if j.status == JobStatus.RUNNING)
            if running >= self.max_concurrent_jobs:
                raise RegistryFullError(
                    f"{running} deploys already running (limit {self.max_concurrent_jobs})"
                )
            job = DeployJob(id=job_id, channel=channel)
            self._jobs[job_id] = job
            # Started under the lock so the job is visible before its first event.
            job.task = asyncio.create_task(self._run_job(job_id, params, channel))
            job.task.add_done_callback(lambda task: self._on_task_done(job, channel, task))

        logger.info("job_created", job_id=job_id)
        return job_id

    async def _run_job(self, job_id: str, params: DeployParams, channel: ProgressChannel) -> None:
        progress = ProgressSink(channel)
        try:
            record = await self.sequencer.run(params, progress, deploy_id=job_id)
        except asyncio.CancelledError:
            await self.mark_terminal(job_id, JobStatus.FAILED, error="cancelled")
            progress.emit(error_marker("Deploy cancelled: server shutting down"), error=True)
            raise
        except DeployError as e:
            logger.error("job_failed", job_id=job_id, kind=e.kind.value, error=e.message)
            await self.mark_terminal(job_id, JobStatus.FAILED, error=e.message)
            progress.emit(error_marker(e.message), error=True)
        except Exception as e:
            logger.exception("job_crashed", job_id=job_id)
            message = str(e) or repr(e)
            await self.mark_terminal(job_id, JobStatus.FAILED, error=message)
            progress.emit(error_marker(message), error=True)
        else:
            await self.mark_terminal(job_id, JobStatus.COMPLETED, record=record)
            progress.emit(complete_marker(record.ip_address, record.ssh_key_path, record.hostname))
            logger.info("job_completed", job_id=job_id, ip=record.ip_address)
        finally:
            channel.close()

    def _on_task_done(self, job: DeployJob, channel: ProgressChannel, task: asyncio.Task) -> None:
        """Finalize jobs cancelled before their first step ran."""
        if not task.cancelled() or job.status != JobStatus.RUNNING:
            return
        job.status = JobStatus.FAILED
        job.error = "cancelled"
        job.completed_at = datetime.now(timezone.utc)
        channel.send(error_marker("Deploy cancelled: server shutting down"))
        channel.close()

    async def attach_stream(self, job_id: str) -> ProgressChannel:
        """
        Take the job's progress stream.

        Only the first caller for a job gets the live channel; every later
        call, and any call for an unknown job, gets an already-closed one.
        """
        async with self._lock:
            job = self._jobs.get(job_id)
            channel = job.channel if job else None
            if job:
                job.channel = None
        if channel is None:
            return ProgressChannel.closed_channel()
        return channel

    async def mark_terminal(
        self,
        job_id: str,
        status: JobStatus,
        *,
        record: Optional[DeployRecord] = None,
        error: Optional[str] = None,
    ) -> bool:
        """Move a running job to its terminal status. Returns False if it already left RUNNING."""
        if status == JobStatus.RUNNING:
            raise ValueError("terminal status required")
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != JobStatus.RUNNING:
                return False
            job.status = status
            job.record = record
            job.error = error
            job.completed_at = datetime.now(timezone.utc)
        return True

    async def get_job_status(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Get job status and, once completed, its deploy record."""
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            return {
                "job_id": job.id,
                "status": job.status.value,
                "error": job.error,
                "record": job.record.model_dump(mode="json") if job.record else None,
                "created_at": job.created_at,
                "completed_at": job.completed_at,
            }

    async def running_count(self) -> int:
        async with self._lock:
            return sum(1 for j in self._jobs.values() if j.status == JobStatus.RUNNING)

    async def shutdown(self) -> None:
        """Cancel in-flight jobs. Created droplets are left in place."""
        logger.info("orchestrator_shutting_down")
        async with self._lock:
            tasks = [j.task for j in self._jobs.values() if j.task and not j.task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("orchestrator_shutdown_complete", cancelled=len(tasks))
