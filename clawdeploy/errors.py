"""
Deploy Errors

Closed set of error kinds raised by the deployment engine. Every error
carries its kind, a human message, structured details and the exit code
the console front end should return.
"""
from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any


class ExitCode(IntEnum):
    """Exit codes for the console front end."""

    SUCCESS = 0
    DEPLOY_FAILED = 1
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    REMOTE_ERROR = 12
    TIMEOUT = 13
    LOCAL_ERROR = 14
    UNKNOWN_ERROR = 127


class ErrorKind(str, Enum):
    HOME_DIR_NOT_FOUND = "home_dir_not_found"
    BACKUP = "backup"
    NO_BACKUPS = "no_backups"
    PROVIDER_API = "provider_api"
    REMOTE_SHELL = "remote_shell"
    KEY_GENERATION = "key_generation"
    TIMEOUT = "timeout"
    PROVISION = "provision"
    MISSING_PARAMETER = "missing_parameter"
    STEP_FAILED = "step_failed"
    LOCAL_IO = "local_io"
    TRANSPORT = "transport"
    SERIALIZATION = "serialization"
    UNCLASSIFIED = "unclassified"


class DeployError(Exception):
    """Base exception for every failure the engine reports."""

    kind: ErrorKind = ErrorKind.UNCLASSIFIED
    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, **self.details}


class HomeDirNotFoundError(DeployError):
    kind = ErrorKind.HOME_DIR_NOT_FOUND
    exit_code = ExitCode.CONFIG_ERROR

    def __init__(self) -> None:
        super().__init__("Home directory not found")


class BackupError(DeployError):
    kind = ErrorKind.BACKUP
    exit_code = ExitCode.LOCAL_ERROR

    def __init__(self, message: str):
        super().__init__(f"Backup failed: {message}")


class NoBackupsError(DeployError):
    kind = ErrorKind.NO_BACKUPS
    exit_code = ExitCode.LOCAL_ERROR

    def __init__(self, directory: str):
        super().__init__(f"No backups found in {directory}", {"directory": directory})


class ProviderAPIError(DeployError):
    """Non-success response from the DigitalOcean API."""

    kind = ErrorKind.PROVIDER_API
    exit_code = ExitCode.PROVIDER_ERROR

    def __init__(self, operation: str, status_code: int, body: str):
        super().__init__(
            f"DigitalOcean API error: {operation} failed ({status_code}): {body}",
            {"operation": operation, "status_code": status_code},
        )
        self.operation = operation
        self.status_code = status_code
        self.body = body


class RemoteShellError(DeployError):
    """SSH transport failure or a non-zero remote exit status."""

    kind = ErrorKind.REMOTE_SHELL
    exit_code = ExitCode.REMOTE_ERROR

    def __init__(self, message: str, exit_status: int | None = None, stderr: str = ""):
        details: dict[str, Any] = {}
        if exit_status is not None:
            details["exit_status"] = exit_status
        super().__init__(f"SSH error: {message}", details)
        self.exit_status = exit_status
        self.stderr = stderr


class KeyGenerationError(DeployError):
    kind = ErrorKind.KEY_GENERATION
    exit_code = ExitCode.LOCAL_ERROR

    def __init__(self, message: str):
        super().__init__(f"SSH key generation error: {message}")


class ReadinessTimeoutError(DeployError):
    kind = ErrorKind.TIMEOUT
    exit_code = ExitCode.TIMEOUT

    def __init__(self, condition: str, timeout: float | None = None):
        details: dict[str, Any] = {"condition": condition}
        if timeout is not None:
            details["timeout"] = timeout
        super().__init__(f"Timeout waiting for {condition}", details)
        self.condition = condition


class ProvisionError(DeployError):
    """A provisioning module failed; names the module and optional sub-phase."""

    kind = ErrorKind.PROVISION
    exit_code = ExitCode.REMOTE_ERROR

    def __init__(self, module: str, message: str, phase: str | None = None):
        label = f"{module}/{phase}" if phase else module
        super().__init__(
            f"Provision error ({label}): {message}",
            {"module": module, "phase": phase},
        )
        self.module = module
        self.phase = phase


class MissingParameterError(DeployError):
    kind = ErrorKind.MISSING_PARAMETER
    exit_code = ExitCode.CONFIG_ERROR

    def __init__(self, name: str):
        super().__init__(f"Missing required parameter: {name}", {"parameter": name})
        self.name = name


class StepFailedError(DeployError):
    """Failure after the droplet exists. The droplet is left in place."""

    kind = ErrorKind.STEP_FAILED
    exit_code = ExitCode.DEPLOY_FAILED

    def __init__(
        self,
        step: int,
        message: str,
        instance_id: int | None = None,
        address: str | None = None,
        key_path: str | None = None,
    ):
        super().__init__(
            f"Deploy failed at step {step}: {message}",
            {
                "step": step,
                "instance_id": instance_id,
                "address": address,
                "key_path": key_path,
            },
        )
        self.step = step
        self.instance_id = instance_id
        self.address = address
        self.key_path = key_path


class LocalIOError(DeployError):
    kind = ErrorKind.LOCAL_IO
    exit_code = ExitCode.LOCAL_ERROR

    def __init__(self, message: str):
        super().__init__(f"IO error: {message}")


class TransportError(DeployError):
    kind = ErrorKind.TRANSPORT
    exit_code = ExitCode.PROVIDER_ERROR

    def __init__(self, message: str):
        super().__init__(f"HTTP error: {message}")


class SerializationError(DeployError):
    kind = ErrorKind.SERIALIZATION
    exit_code = ExitCode.UNKNOWN_ERROR

    def __init__(self, message: str):
        super().__init__(f"JSON error: {message}")


class UnclassifiedError(DeployError):
    kind = ErrorKind.UNCLASSIFIED
    exit_code = ExitCode.UNKNOWN_ERROR
