"""
Remote Command Gateway

Blocking SSH primitives (execute, upload, download) over paramiko, the
restricted-identity wrapper, and async wrappers that dispatch every call to
a bounded thread pool so slow remote commands never stall the event loop.
"""
from __future__ import annotations

import asyncio
import os
import select
import shlex
import socket
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import paramiko
import structlog
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from .config import OPENCLAW_USER
from .errors import KeyGenerationError, LocalIOError, RemoteShellError

logger = structlog.get_logger(__name__)

SSH_PORT = 22
CONNECT_TIMEOUT = 10.0
RECV_CHUNK = 32768


def drain_channel(channel, timeout: Optional[float] = None) -> Tuple[bytes, bytes]:
    """
    Read stdout and stderr of an exec channel until the command exits.

    Both streams are read as data arrives. Raises socket.timeout when
    neither stream produces anything for ``timeout`` seconds.
    """
    stdout: List[bytes] = []
    stderr: List[bytes] = []
    while True:
        while channel.recv_ready():
            stdout.append(channel.recv(RECV_CHUNK))
        while channel.recv_stderr_ready():
            stderr.append(channel.recv_stderr(RECV_CHUNK))
        if (channel.exit_status_ready() and channel.eof_received) or channel.closed:
            if not channel.recv_ready() and not channel.recv_stderr_ready():
                break
            continue
        readable, _, _ = select.select([channel], [], [], timeout)
        if not readable:
            raise socket.timeout(f"no output for {timeout}s")
    return b"".join(stdout), b"".join(stderr)


@dataclass(frozen=True)
class KeyPair:
    private_key_path: Path
    public_key_openssh: str


def generate_keypair(keys_dir: Path, deploy_id: str) -> KeyPair:
    """Generate an Ed25519 key pair and write the private half with mode 0600."""
    private_key = Ed25519PrivateKey.generate()
    try:
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.OpenSSH,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_openssh = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        ).decode("ascii")
    except (ValueError, TypeError) as e:
        raise KeyGenerationError(f"Failed to encode key pair: {e}") from e

    private_path = keys_dir / f"clawdeploy_{deploy_id}"
    try:
        keys_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(private_pem)
        os.chmod(private_path, 0o600)
    except OSError as e:
        raise LocalIOError(f"Failed to write {private_path}: {e}") from e

    return KeyPair(
        private_key_path=private_path,
        public_key_openssh=f"{public_openssh} clawdeploy-{deploy_id[:8]}",
    )


def wrap_as_service_user(command: str, user: str = OPENCLAW_USER) -> str:
    """Run ``command`` through ``su`` so only root's key is needed."""
    return f"su - {user} -c {shlex.quote(command)}"


class RemoteGateway:
    """
    Thin synchronous wrapper around one SSH connection per call.

    Every method authenticates as root with the job's private key. A
    non-zero exit status raises RemoteShellError carrying stderr.
    """

    def __init__(
        self,
        *,
        username: str = "root",
        connect_timeout: float = CONNECT_TIMEOUT,
        command_timeout: Optional[float] = None,
        max_workers: int = 16,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.username = username
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="ssh"
        )

    def _connect(self, address: str, key_path: Path) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=address,
                port=SSH_PORT,
                username=self.username,
                key_filename=str(key_path),
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except (paramiko.SSHException, socket.error) as e:
            client.close()
            raise RemoteShellError(f"connect to {address}: {e}") from e
        return client

    def execute(self, address: str, key_path: Path, command: str) -> str:
        """Execute a command and return its stdout."""
        client = self._connect(address, key_path)
        try:
            _, stdout, _ = client.exec_command(command, timeout=self.command_timeout)
            raw_out, raw_err = drain_channel(stdout.channel, self.command_timeout)
            exit_status = stdout.channel.recv_exit_status()
            output = raw_out.decode("utf-8", errors="replace")
            error_output = raw_err.decode("utf-8", errors="replace")
        except (paramiko.SSHException, socket.error) as e:
            raise RemoteShellError(f"exec on {address}: {e}") from e
        finally:
            client.close()

        if exit_status != 0:
            raise RemoteShellError(
                f"Command exited with status {exit_status}: {error_output.strip()}",
                exit_status=exit_status,
                stderr=error_output,
            )
        return output

    def execute_as_service_user(self, address: str, key_path: Path, command: str) -> str:
        return self.execute(address, key_path, wrap_as_service_user(command))

    def put_file(self, address: str, key_path: Path, local_path: Path, remote_path: str) -> None:
        """Upload a local file."""
        if not local_path.is_file():
            raise LocalIOError(f"{local_path} does not exist")
        client = self._connect(address, key_path)
        try:
            with client.open_sftp() as sftp:
                sftp.put(str(local_path), remote_path)
        except OSError as e:
            raise RemoteShellError(f"upload {local_path} to {address}:{remote_path}: {e}") from e
        except paramiko.SSHException as e:
            raise RemoteShellError(f"upload to {address}: {e}") from e
        finally:
            client.close()

    def get_file(self, address: str, key_path: Path, remote_path: str, local_path: Path) -> None:
        """Download a remote file."""
        client = self._connect(address, key_path)
        try:
            with client.open_sftp() as sftp:
                sftp.get(remote_path, str(local_path))
        except OSError as e:
            raise RemoteShellError(f"download {address}:{remote_path}: {e}") from e
        except paramiko.SSHException as e:
            raise RemoteShellError(f"download from {address}: {e}") from e
        finally:
            client.close()

    async def _offload(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    async def run(self, address: str, key_path: Path, command: str) -> str:
        return await self._offload(self.execute, address, key_path, command)

    async def run_as_service_user(self, address: str, key_path: Path, command: str) -> str:
        return await self._offload(self.execute_as_service_user, address, key_path, command)

    async def upload(self, address: str, key_path: Path, local_path: Path, remote_path: str) -> None:
        await self._offload(self.put_file, address, key_path, local_path, remote_path)

    async def download(self, address: str, key_path: Path, remote_path: str, local_path: Path) -> None:
        await self._offload(self.get_file, address, key_path, remote_path, local_path)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
