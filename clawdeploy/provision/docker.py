from __future__ import annotations

import json
from typing import TYPE_CHECKING

from ..config import OPENCLAW_USER

if TYPE_CHECKING:
    from . import ProvisionContext

DAEMON_CONFIG = {
    "iptables": True,
    "ip-forward": True,
    "userland-proxy": False,
    "live-restore": True,
    "ip6tables": False,
    "log-driver": "json-file",
    "log-opts": {"max-size": "10m", "max-file": "3"},
    "default-address-pools": [{"base": "172.17.0.0/12", "size": 24}],
}


async def provision(ctx: "ProvisionContext") -> None:
    """Write daemon.json, add openclaw to the docker group, restart docker."""
    daemon_json = json.dumps(DAEMON_CONFIG, indent=2)
    await ctx.root(
        f"mkdir -p /etc/docker && cat > /etc/docker/daemon.json << 'DJEOF'\n{daemon_json}\nDJEOF\n",
        phase="daemon.json",
    )
    await ctx.root(f"usermod -aG docker {OPENCLAW_USER}", phase="docker group")
    await ctx.root("systemctl restart docker", phase="restart")
