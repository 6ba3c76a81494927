"""
OpenClaw install

Creates the ~/.openclaw layout, writes the secrets file (mode 600), wires
Claude Code to read its key from that file, installs openclaw with pnpm
and verifies it.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from ..config import OPENCLAW_HOME, OPENCLAW_USER
from .nodejs import USER_ENV
from .secrets import filter_session_token, has_value, render_env_file

if TYPE_CHECKING:
    from . import ProvisionContext

CONFIG_DIR = f"{OPENCLAW_HOME}/.openclaw"
ENV_FILE = f"{CONFIG_DIR}/.env"

API_KEY_HELPER = """#!/usr/bin/env bash
if [ -f "$HOME/.openclaw/.env" ]; then
  set -a
  . "$HOME/.openclaw/.env"
  set +a
fi
printf '%s' "${ANTHROPIC_API_KEY:-}"
"""

CLAUDE_SETTINGS = f"""{{
  "apiKeyHelper": "{OPENCLAW_HOME}/.claude/api-key-helper.sh",
  "forceLoginMethod": "console"
}}
"""


def secrets_entries(options) -> list:
    return [
        ("ANTHROPIC_API_KEY", filter_session_token(options.anthropic_key)),
        ("OPENAI_API_KEY", options.openai_key),
        ("GEMINI_API_KEY", options.gemini_key),
        ("WHATSAPP_PHONE_NUMBER", options.whatsapp_phone_number),
        ("TELEGRAM_BOT_TOKEN", options.telegram_bot_token),
    ]


async def provision(ctx: "ProvisionContext") -> None:
    owner = f"{OPENCLAW_USER}:{OPENCLAW_USER}"
    cd = CONFIG_DIR

    await ctx.root(
        f"mkdir -p {cd}/sessions {cd}/credentials {cd}/data {cd}/logs "
        f"{cd}/agents/main/agent {cd}/workspace && "
        f"chmod 700 {cd} {cd}/credentials {cd}/agents/main/agent && chown -R {owner} {cd}"
    )

    env_body = render_env_file(secrets_entries(ctx.options))
    await ctx.root(
        f"cat > {ENV_FILE} << 'ENVEOF'\n{env_body}ENVEOF\n"
        f"chmod 600 {ENV_FILE} && chown {owner} {ENV_FILE}",
        phase="secrets file",
    )

    claude_dir = f"{OPENCLAW_HOME}/.claude"
    await ctx.root(
        f"mkdir -p {claude_dir} && "
        f"cat > {claude_dir}/api-key-helper.sh << 'CCHELPEREOF'\n{API_KEY_HELPER}CCHELPEREOF\n"
        f"chmod 700 {claude_dir} {claude_dir}/api-key-helper.sh && "
        f"cat > {claude_dir}/settings.json << 'CCSETTINGSEOF'\n{CLAUDE_SETTINGS}CCSETTINGSEOF\n"
        f"chmod 600 {claude_dir}/settings.json && chown -R {owner} {claude_dir}",
        phase="claude config",
    )

    # openclaw refuses hardlinked extension files; restored backups may contain them.
    await ctx.root(
        f"if [ -d {cd}/extensions ]; then "
        f"find {cd}/extensions -type f -links +1 -exec sh -c "
        f"'for f do cp -p \"$f\" \"$f.__tmp\" && mv -f \"$f.__tmp\" \"$f\"; done' sh {{}} +; "
        f"fi && chown -R {owner} {cd} && chmod 700 {cd}"
    )

    await ctx.as_service_user(f"{USER_ENV} pnpm install -g openclaw@latest", phase="openclaw install")
    version = await ctx.as_service_user(f"{USER_ENV} openclaw --version", phase="openclaw verify")
    ctx.progress.detail(f"OpenClaw version: {version.strip()}")

    if has_value(filter_session_token(ctx.options.anthropic_key)):
        await ctx.as_service_user(
            f"{USER_ENV} claude -p \"health check\" --output-format text --max-turns 1 >/dev/null",
            phase="claude bootstrap",
        )
