"""
Control Plane Data Models

Defines the Job status, the persisted DeployRecord, and the request and
response shapes of the HTTP surface.
"""
from pydantic import BaseModel, ConfigDict, Field, SecretStr
from typing import Optional
from datetime import datetime, timezone
from enum import Enum as PyEnum


class JobStatus(str, PyEnum):
    """Job status enumeration. A job leaves RUNNING exactly once."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class DeployRecord(BaseModel):
    """
    Durable summary of one completed deploy.

    Written once at the final step and never mutated afterwards.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Job identifier")
    droplet_id: int = Field(description="DigitalOcean droplet ID")
    hostname: str = Field(description="Droplet name")
    ip_address: str = Field(description="Public IPv4 address")
    region: str = Field(description="Region slug (e.g., 'sgp1')")
    size: str = Field(description="Size slug (e.g., 's-2vcpu-4gb')")
    ssh_key_path: str = Field(description="Local path of the job's private key")
    ssh_key_fingerprint: str = Field(description="Fingerprint reported by DigitalOcean")
    backup_restored: Optional[str] = Field(default=None, description="Restored archive path, if any")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DeployRequest(BaseModel):
    """Body of POST /api/deploy. Empty strings mean 'not provided'."""
    do_token: SecretStr
    anthropic_key: SecretStr
    openai_key: SecretStr = SecretStr("")
    gemini_key: SecretStr = SecretStr("")
    whatsapp_phone_number: str = ""
    telegram_bot_token: SecretStr = SecretStr("")
    region: str = ""
    size: str = ""
    hostname: str = ""
    backup: str = Field(default="", description="Local archive path, '' or 'none' to skip")
    enable_backups: bool = False
    tailscale: bool = False


class DeployResponse(BaseModel):
    deploy_id: str


class BackupEntry(BaseModel):
    name: str
    path: str
    size: int
    modified: Optional[datetime] = None


class RemoteTarget(BaseModel):
    """An existing droplet reachable as root with a local key."""
    ip: str
    key_path: str


class PairingApproval(RemoteTarget):
    channel: str
    code: str


class RemoteCommandResult(BaseModel):
    ip: str
    output: str
