"""
Control Plane Core

Deploy orchestration components: models, sequencer, job registry.
"""

from .models import DeployRecord, DeployRequest, JobStatus
from .sequencer import DeployParams, DeploySequencer
from .job_orchestrator import DeployJob, JobOrchestrator, RegistryFullError

__all__ = [
    "DeployJob",
    "DeployParams",
    "DeployRecord",
    "DeployRequest",
    "DeploySequencer",
    "JobOrchestrator",
    "JobStatus",
    "RegistryFullError",
]
