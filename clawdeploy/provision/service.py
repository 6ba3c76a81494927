"""
Gateway service activation payloads (step 15).

Both commands run as the openclaw user through the service-user wrapper.
"""
from __future__ import annotations

from typing import List, Optional

from ..config import GATEWAY_PORT, OPENCLAW_HOME

UNIT = "openclaw-gateway.service"

PRIMARY_MODEL = "anthropic/claude-opus-4-6"
FALLBACK_MODELS = {
    "OpenAI": "openai/gpt-5-mini",
    "Gemini": "google/gemini-2.5-flash",
}

_PATH_EXPORT = (
    f'export PATH="{OPENCLAW_HOME}/.local/bin:{OPENCLAW_HOME}/.local/share/pnpm:/usr/local/bin:$PATH"'
)
_BUS_EXPORT = (
    "export XDG_RUNTIME_DIR=/run/user/$(id -u) "
    "DBUS_SESSION_BUS_ADDRESS=unix:path=/run/user/$(id -u)/bus"
)

# Copies TELEGRAM_BOT_TOKEN from the environment into openclaw.json.
_TELEGRAM_PATCH = (
    "node -e 'const fs=require(\"fs\");const p=process.env.HOME+\"/.openclaw/openclaw.json\";"
    "const cfg=JSON.parse(fs.readFileSync(p,\"utf8\"));cfg.channels=cfg.channels||{};"
    "cfg.channels.telegram=cfg.channels.telegram||{};"
    "cfg.channels.telegram.botToken=process.env.TELEGRAM_BOT_TOKEN;"
    "fs.writeFileSync(p, JSON.stringify(cfg,null,2)+\"\\n\");'"
)


def build_start_command(openai_enabled: bool, gemini_enabled: bool) -> str:
    """Onboard openclaw, install its user unit with the .env drop-in, start it."""
    home = OPENCLAW_HOME
    onboard_args = ""
    if openai_enabled:
        onboard_args += ' --openai-api-key "$OPENAI_API_KEY"'
    if gemini_enabled:
        onboard_args += ' --gemini-api-key "$GEMINI_API_KEY"'

    dropin_dir = f"{home}/.config/systemd/user/{UNIT}.d"
    parts = [
        _PATH_EXPORT,
        _BUS_EXPORT,
        f"if [ -f {home}/.openclaw/.env ]; then set -a; . {home}/.openclaw/.env; set +a; fi",
        (
            "(openclaw onboard --non-interactive --mode local --auth-choice apiKey "
            f'--anthropic-api-key "$ANTHROPIC_API_KEY"{onboard_args} '
            f"--secret-input-mode plaintext --gateway-port {GATEWAY_PORT} --gateway-bind loopback "
            "--install-daemon --daemon-runtime node --skip-skills --accept-risk >/dev/null 2>&1 || "
            f"openclaw daemon install --port {GATEWAY_PORT} --runtime node --force >/dev/null 2>&1)"
        ),
        (
            f'if [ -n "$TELEGRAM_BOT_TOKEN" ] && [ -f {home}/.openclaw/openclaw.json ]; then '
            f"{_TELEGRAM_PATCH}; fi"
        ),
        f"mkdir -p {dropin_dir}",
        f"printf '[Service]\\nEnvironmentFile=-{home}/.openclaw/.env\\n' > {dropin_dir}/10-env.conf",
        "systemctl --user daemon-reload",
        f"systemctl --user enable --now {UNIT}",
        f"systemctl --user is-active {UNIT} >/dev/null",
        "echo ok",
    ]
    return " && ".join(parts)


def failover_chain(openai_enabled: bool, gemini_enabled: bool) -> List[str]:
    chain = ["Anthropic"]
    if openai_enabled:
        chain.append("OpenAI")
    if gemini_enabled:
        chain.append("Gemini")
    return chain


def build_failover_command(openai_enabled: bool, gemini_enabled: bool) -> Optional[str]:
    """None when no secondary model key is configured."""
    chain = failover_chain(openai_enabled, gemini_enabled)
    if len(chain) == 1:
        return None

    cmd = f"{_PATH_EXPORT}; {_BUS_EXPORT}; "
    cmd += f"openclaw models set {PRIMARY_MODEL} >/dev/null 2>&1 || true;"
    for provider in chain[1:]:
        cmd += f" openclaw models fallbacks add {FALLBACK_MODELS[provider]} >/dev/null 2>&1 || true;"
    cmd += " echo ok"
    return cmd


def remote_status_command() -> str:
    """Fixed diagnostic command for the remote-control endpoint."""
    return f"{_PATH_EXPORT} && {_BUS_EXPORT} && openclaw status 2>&1; systemctl --user status {UNIT} --no-pager 2>&1 || true"


def pairing_approve_command(channel: str, code: str) -> str:
    """Approve a messaging pairing; callers validate ``channel`` and ``code`` as slugs."""
    return f"{_PATH_EXPORT} && {_BUS_EXPORT} && openclaw pairing approve {channel} {code}"
