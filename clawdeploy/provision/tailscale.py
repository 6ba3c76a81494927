"""Optional Tailscale VPN. Ubuntu 24.04 (noble) is the only droplet image used."""
from __future__ import annotations

from typing import TYPE_CHECKING

from .firewall import TAILSCALE_RULE

if TYPE_CHECKING:
    from . import ProvisionContext

ADD_REPO = """curl -fsSL "https://pkgs.tailscale.com/stable/ubuntu/noble.noarmor.gpg" | \\
    tee /usr/share/keyrings/tailscale-archive-keyring.gpg > /dev/null && \\
curl -fsSL "https://pkgs.tailscale.com/stable/ubuntu/noble.tailscale-keyring.list" | \\
    tee /etc/apt/sources.list.d/tailscale.list > /dev/null"""


async def provision(ctx: "ProvisionContext") -> None:
    await ctx.root(ADD_REPO, phase="tailscale repo")
    await ctx.root("apt-get update && apt-get install -y tailscale", phase="tailscale install")
    await ctx.root("systemctl enable tailscaled && systemctl start tailscaled")
    await ctx.root(TAILSCALE_RULE)
