"""pnpm global directories for the openclaw user, plus the companion AI CLIs."""
from __future__ import annotations

from typing import TYPE_CHECKING

from ..config import OPENCLAW_HOME, OPENCLAW_USER

if TYPE_CHECKING:
    from . import ProvisionContext

PNPM_HOME = f"{OPENCLAW_HOME}/.local/share/pnpm"
USER_PATH = f"{OPENCLAW_HOME}/.local/bin:{PNPM_HOME}:/usr/local/bin:/usr/bin:/bin"
USER_ENV = f"PNPM_HOME={PNPM_HOME} PATH={USER_PATH} HOME={OPENCLAW_HOME}"

COMPANION_CLIS = ("@anthropic-ai/claude-code", "@openai/codex", "@google/gemini-cli")
COMPANION_BINARIES = ("claude", "codex", "gemini")


async def provision(ctx: "ProvisionContext") -> None:
    await ctx.root(
        f"mkdir -p {PNPM_HOME}/store {OPENCLAW_HOME}/.local/bin && "
        f"chown -R {OPENCLAW_USER}:{OPENCLAW_USER} {OPENCLAW_HOME}/.local"
    )
    await ctx.as_service_user(
        f"pnpm config set global-dir {PNPM_HOME} && "
        f"pnpm config set global-bin-dir {OPENCLAW_HOME}/.local/bin",
        phase="pnpm config",
    )
    await ctx.as_service_user(
        f"{USER_ENV} pnpm install -g {' '.join(COMPANION_CLIS)}",
        phase="node cli install",
    )
    await ctx.as_service_user(
        f"{USER_ENV} " + " && ".join(f"{binary} --version" for binary in COMPANION_BINARIES),
        phase="node cli verify",
    )
