"""Perimeter hardening: fail2ban, unattended upgrades, UFW routed policy, DOCKER-USER chain."""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from . import ProvisionContext

TAILSCALE_RULE = "ufw allow 41641/udp comment 'Tailscale'"

FAIL2BAN = """cat > /etc/fail2ban/jail.local << 'F2BEOF'
[DEFAULT]
bantime = 3600
findtime = 600
maxretry = 5
backend = systemd

[sshd]
enabled = true
port = ssh
filter = sshd
F2BEOF
systemctl restart fail2ban && systemctl enable fail2ban"""

AUTO_UPGRADES = """cat > /etc/apt/apt.conf.d/20auto-upgrades << 'AUEOF'
APT::Periodic::Update-Package-Lists "1";
APT::Periodic::Unattended-Upgrade "1";
APT::Periodic::AutocleanInterval "7";
AUEOF
"""

UNATTENDED_UPGRADES = """cat > /etc/apt/apt.conf.d/50unattended-upgrades << 'UUEOF'
Unattended-Upgrade::Allowed-Origins {
    "${distro_id}:${distro_codename}-security";
    "${distro_id}ESMApps:${distro_codename}-apps-security";
    "${distro_id}ESM:${distro_codename}-infra-security";
};
Unattended-Upgrade::AutoFixInterruptedDpkg "true";
Unattended-Upgrade::MinimalSteps "true";
Unattended-Upgrade::Remove-Unused-Dependencies "true";
Unattended-Upgrade::Automatic-Reboot "false";
UUEOF
"""

# Inserts the DOCKER-USER block before the first COMMIT in after.rules, once.
DOCKER_USER_RULES = r"""
DEFAULT_IF=$(ip route | grep default | awk '{print $5}' | head -n1)
if [ -z "$DEFAULT_IF" ]; then
    echo "ERROR: Could not detect default network interface" >&2
    exit 1
fi

if grep -q 'DOCKER-USER' /etc/ufw/after.rules; then
    echo "DOCKER-USER rules already present, skipping"
else
    awk -v default_if="$DEFAULT_IF" '
    /^COMMIT$/ && !inserted {
        print ""
        print "# Docker port isolation - block forwarded traffic by default"
        print ":DOCKER-USER - [0:0]"
        print "-A DOCKER-USER -m conntrack --ctstate RELATED,ESTABLISHED -j ACCEPT"
        print "-A DOCKER-USER -i lo -j ACCEPT"
        print "-A DOCKER-USER -i " default_if " -j DROP"
        inserted=1
    }
    { print }
    END {
        if (!inserted) {
            print "ERROR: Could not find COMMIT in /etc/ufw/after.rules" > "/dev/stderr"
            exit 1
        }
    }' /etc/ufw/after.rules > /etc/ufw/after.rules.tmp && mv /etc/ufw/after.rules.tmp /etc/ufw/after.rules
fi
"""


async def provision(ctx: "ProvisionContext") -> None:
    await ctx.root(FAIL2BAN, phase="fail2ban")
    await ctx.root(AUTO_UPGRADES, phase="unattended-upgrades")
    await ctx.root(UNATTENDED_UPGRADES, phase="unattended-upgrades")
    await ctx.root("ufw default deny routed", phase="ufw")
    if ctx.options.tailscale:
        await ctx.root(TAILSCALE_RULE, phase="ufw")
    await ctx.root(DOCKER_USER_RULES, phase="DOCKER-USER rules")
    await ctx.root("ufw reload", phase="ufw")
