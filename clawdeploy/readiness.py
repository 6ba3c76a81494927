"""
Readiness Poller

Fixed-interval bounded waits on slow external conditions: droplet becoming
active, SSH accepting commands, and cloud-init writing its sentinel.
"""
from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

from .config import CLOUD_INIT_SENTINEL
from .errors import RemoteShellError, ReadinessTimeoutError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def wait_until(
    probe: Callable[[], Awaitable[Optional[T]]],
    *,
    interval: float,
    timeout: float,
    condition: str,
) -> T:
    """
    Sleep ``interval``, evaluate ``probe``, repeat.

    Returns the first truthy probe result. Once ``timeout`` seconds have
    elapsed without success, raises ReadinessTimeoutError naming
    ``condition``. A probe still running at ``timeout + interval`` is
    cancelled and counts as the timeout. Errors raised by ``probe``
    propagate.
    """
    start = time.monotonic()
    deadline = start + timeout + interval
    attempts = 0
    while True:
        await asyncio.sleep(interval)
        attempts += 1
        budget = deadline - time.monotonic()
        if budget <= 0:
            _log_timeout(condition, attempts, timeout)
            raise ReadinessTimeoutError(condition, timeout)
        try:
            result = await asyncio.wait_for(probe(), budget)
        except asyncio.TimeoutError:
            _log_timeout(condition, attempts, timeout)
            raise ReadinessTimeoutError(condition, timeout) from None
        if result:
            logger.debug("readiness_met", condition=condition, attempts=attempts)
            return result
        if time.monotonic() - start >= timeout:
            _log_timeout(condition, attempts, timeout)
            raise ReadinessTimeoutError(condition, timeout)


def _log_timeout(condition: str, attempts: int, timeout: float) -> None:
    logger.warning("readiness_timeout", condition=condition, attempts=attempts, timeout=timeout)


async def wait_for_active(provider, droplet_id: int, *, interval: float, timeout: float):
    """Wait for ``active`` status with a public address; returns the descriptor."""

    async def probe():
        droplet = await provider.get_droplet(droplet_id)
        if droplet.status == "active" and droplet.public_ip:
            return droplet
        return None

    return await wait_until(
        probe, interval=interval, timeout=timeout, condition="droplet to become active"
    )


async def wait_for_ssh(gateway, address: str, key_path: Path, *, interval: float, timeout: float) -> None:
    async def probe() -> bool:
        try:
            await gateway.run(address, key_path, "echo ok")
        except RemoteShellError:
            return False
        return True

    await wait_until(
        probe, interval=interval, timeout=timeout, condition="SSH to accept connections"
    )


async def wait_for_cloud_init(
    gateway, address: str, key_path: Path, *, interval: float, timeout: float
) -> None:
    command = f"test -f {CLOUD_INIT_SENTINEL} && echo done"

    async def probe() -> bool:
        try:
            output = await gateway.run(address, key_path, command)
        except RemoteShellError:
            return False
        return output.strip() == "done"

    await wait_until(
        probe, interval=interval, timeout=timeout, condition="cloud-init to complete"
    )
