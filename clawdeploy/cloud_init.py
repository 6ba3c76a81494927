"""
Cloud-init payload handed to the droplet at creation.

Only base system setup happens here. The final ``touch`` of the sentinel is
what the boot-complete readiness wait looks for, so it must stay last.
"""
from .config import CLOUD_INIT_SENTINEL, GATEWAY_PORT

_TEMPLATE = """#cloud-config
package_update: true
package_upgrade: true

packages:
  - curl
  - gnupg
  - ufw
  - git
  - build-essential
  - docker.io
  - fail2ban
  - unattended-upgrades

runcmd:
  # Firewall basics; provisioning adds the DOCKER-USER rules later
  - ufw default deny incoming
  - ufw default allow outgoing
  - ufw allow 22/tcp
  - ufw allow {port}/tcp
  - ufw --force enable

  # Node.js 24 LTS
  - curl -fsSL https://deb.nodesource.com/setup_24.x | bash -
  - apt-get install -y nodejs
  - corepack enable

  - systemctl enable --now docker

  - touch {sentinel}
"""


def generate() -> str:
    return _TEMPLATE.format(port=GATEWAY_PORT, sentinel=CLOUD_INIT_SENTINEL)
