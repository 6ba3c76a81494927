"""Create the restricted openclaw account and authorize the job's key."""
from __future__ import annotations

import shlex
from typing import TYPE_CHECKING

from ..config import OPENCLAW_HOME, OPENCLAW_USER

if TYPE_CHECKING:
    from . import ProvisionContext

BASHRC = f"""# Enable 256 colors
export TERM=xterm-256color
export COLORTERM=truecolor

# pnpm paths
export PNPM_HOME="{OPENCLAW_HOME}/.local/share/pnpm"
export PATH="{OPENCLAW_HOME}/.local/bin:$PNPM_HOME:$PATH"

# Load OpenClaw environment variables when present
if [ -f "$HOME/.openclaw/.env" ]; then
  set -a
  . "$HOME/.openclaw/.env"
  set +a
fi

alias ll='ls -lah'

# systemd user services
export XDG_RUNTIME_DIR=/run/user/$(id -u)
if [ -z "$DBUS_SESSION_BUS_ADDRESS" ]; then
  export DBUS_SESSION_BUS_ADDRESS="unix:path=${{XDG_RUNTIME_DIR}}/bus"
fi
"""

BASH_PROFILE = """if [ -f ~/.bashrc ]; then
    . ~/.bashrc
fi
"""

SUDOERS = "\n".join(
    [
        "# OpenClaw sudo permissions (scoped)",
        *(
            f"{OPENCLAW_USER} ALL=(ALL) NOPASSWD: /usr/bin/systemctl {verb} openclaw"
            for verb in ("start", "stop", "restart", "status", "enable", "disable")
        ),
        f"{OPENCLAW_USER} ALL=(ALL) NOPASSWD: /usr/bin/systemctl daemon-reload",
        *(
            f"{OPENCLAW_USER} ALL=(ALL) NOPASSWD: /usr/bin/tailscale {args}"
            for args in ("status", "up *", "down", "ip *", "version", "ping *", "whois *")
        ),
        f"{OPENCLAW_USER} ALL=(ALL) NOPASSWD: /usr/bin/journalctl -u openclaw *",
    ]
) + "\n"


def write_file(path: str, content: str, mode: str, owner: str, marker: str = "EOF") -> str:
    """Shell snippet writing ``content`` verbatim through a quoted heredoc."""
    return (
        f"cat > {path} << '{marker}'\n{content}{marker}\n"
        f"chown {owner} {path} && chmod {mode} {path}"
    )


async def provision(ctx: "ProvisionContext") -> None:
    user, home = OPENCLAW_USER, OPENCLAW_HOME
    owner = f"{user}:{user}"

    await ctx.root(
        f"id -u {user} >/dev/null 2>&1 || "
        f"useradd --system --create-home --home-dir {home} --shell /bin/bash {user}",
        phase="user creation",
    )
    await ctx.root(f"chown {owner} {home} && chmod 755 {home}")
    await ctx.root(write_file(f"{home}/.bashrc", BASHRC, "644", owner, "BASHRCEOF"))
    await ctx.root(write_file(f"{home}/.bash_profile", BASH_PROFILE, "644", owner, "BPEOF"))
    await ctx.root(
        write_file(f"/etc/sudoers.d/{user}", SUDOERS, "440", "root:root", "SUDOEOF")
        + f"\nvisudo -cf /etc/sudoers.d/{user}",
        phase="sudoers",
    )

    pubkey = shlex.quote(ctx.options.public_key_openssh.strip())
    await ctx.root(
        f"mkdir -p {home}/.ssh && chmod 700 {home}/.ssh && "
        f"echo {pubkey} > {home}/.ssh/authorized_keys && "
        f"chmod 600 {home}/.ssh/authorized_keys && chown -R {owner} {home}/.ssh",
        phase="authorized_keys",
    )

    await ctx.root(f"loginctl enable-linger {user}")
    await ctx.root(
        f"OPENCLAW_UID=$(id -u {user}) && mkdir -p /run/user/$OPENCLAW_UID && "
        f"chown {owner} /run/user/$OPENCLAW_UID && chmod 700 /run/user/$OPENCLAW_UID"
    )

    # A restored backup lands in /root/.openclaw; move it under the service home.
    await ctx.root(
        f"if [ -d /root/.openclaw ]; then "
        f"mkdir -p {home}/.openclaw && cp -a /root/.openclaw/. {home}/.openclaw/ && "
        f"chown -R {owner} {home}/.openclaw && chmod 700 {home}/.openclaw && "
        f"rm -rf /root/.openclaw; fi",
        phase="restore move",
    )
