"""
Deploy Configuration

Settings, fixed remote-side constants, and local directory layout.
"""
import os
from pathlib import Path
from typing import Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings

from .errors import HomeDirNotFoundError, LocalIOError

DEFAULT_REGION = "sgp1"
DEFAULT_SIZE = "s-2vcpu-4gb"
DROPLET_IMAGE = "ubuntu-24-04-x64"
DROPLET_TAG = "openclaw"
GATEWAY_PORT = 18789
CLOUD_INIT_SENTINEL = "/root/.clawdeploy_cloud_init_done"
OPENCLAW_USER = "openclaw"
OPENCLAW_HOME = "/home/openclaw"
SESSION_TOKEN_PREFIX = "sk-ant-oat"


def default_app_dir() -> Path:
    """Resolve ~/.clawdeploy/."""
    try:
        home = Path.home()
    except RuntimeError as e:
        raise HomeDirNotFoundError() from e
    return home / ".clawdeploy"


class DeploySettings(BaseSettings):
    """Process configuration for both front ends."""

    # Provider and remote-side secrets
    do_token: SecretStr = SecretStr("")
    anthropic_api_key: SecretStr = SecretStr("")
    openai_api_key: SecretStr = SecretStr("")
    gemini_api_key: SecretStr = SecretStr("")
    whatsapp_phone_number: str = ""
    telegram_bot_token: SecretStr = SecretStr("")

    # Droplet overrides
    region: Optional[str] = None
    size: Optional[str] = None
    hostname_override: Optional[str] = None
    backup_path: Optional[Path] = None
    enable_backups: bool = False
    tailscale: bool = False

    # API
    api_host: str = os.getenv("API_HOST", "127.0.0.1")
    api_port: int = int(os.getenv("API_PORT", "3456"))

    # Job processing
    max_concurrent_jobs: int = 10
    ssh_workers: int = 16
    ssh_command_timeout: float = 600.0
    log_level: str = "INFO"

    # Readiness waits (seconds)
    active_poll_interval: float = 5.0
    active_timeout: float = 300.0
    ssh_poll_interval: float = 5.0
    ssh_timeout: float = 300.0
    cloud_init_poll_interval: float = 10.0
    cloud_init_timeout: float = 1800.0

    app_dir: Optional[Path] = None

    @property
    def base_dir(self) -> Path:
        return self.app_dir if self.app_dir is not None else default_app_dir()

    @property
    def backups_dir(self) -> Path:
        return self.base_dir / "backups"

    @property
    def keys_dir(self) -> Path:
        return self.base_dir / "keys"

    @property
    def deploys_dir(self) -> Path:
        return self.base_dir / "deploys"

    def ensure_dirs(self) -> None:
        """Create the backups, keys and deploys directories."""
        for path in (self.backups_dir, self.keys_dir, self.deploys_dir):
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise LocalIOError(f"Failed to create {path}: {e}") from e

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
