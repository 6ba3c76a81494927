from .digitalocean import DigitalOceanClient, InstanceDescriptor, SshKeyInfo

__all__ = ["DigitalOceanClient", "InstanceDescriptor", "SshKeyInfo"]
