"""Provision OpenClaw droplets on DigitalOcean."""

__version__ = "1.0.0"
