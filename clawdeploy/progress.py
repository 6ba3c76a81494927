"""
Progress Fan-out

Every progress line is written to the console and, when a job channel is
attached, pushed to that job's single subscriber. Pushing never blocks and
never fails the job.
"""
from __future__ import annotations

import asyncio
import re
import sys
from typing import AsyncIterator, Optional, TextIO

import structlog

logger = structlog.get_logger(__name__)

TOTAL_STEPS = 16
COMPLETE_PREFIX = "DEPLOY_COMPLETE:"
ERROR_PREFIX = "DEPLOY_ERROR:"

_STEP_RE = re.compile(r"\[Step (\d+)/(\d+)\]")


def step_line(step: int, text: str) -> str:
    return f"[Step {step}/{TOTAL_STEPS}] {text}"


def complete_marker(address: str, key_path: str, name: str) -> str:
    return f"{COMPLETE_PREFIX}{address}:{key_path}:{name}"


def error_marker(message: str) -> str:
    return f"{ERROR_PREFIX}{message}"


def parse_step(line: str) -> Optional[tuple[int, int]]:
    """Extract ``(k, N)`` from a ``[Step k/N]`` line, if present."""
    match = _STEP_RE.search(line)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def is_terminal(line: str) -> bool:
    return line.startswith(COMPLETE_PREFIX) or line.startswith(ERROR_PREFIX)


class ProgressChannel:
    """
    Unbounded single-producer, single-consumer stream of progress lines.

    The producer calls ``send`` and finally ``close``. The consumer iterates
    with ``async for``; iteration ends once the channel is closed and all
    buffered lines are drained. ``drop`` marks the consumer as gone, after
    which sends are discarded.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._dropped = False

    @classmethod
    def closed_channel(cls) -> "ProgressChannel":
        """A channel that yields nothing."""
        channel = cls()
        channel.close()
        return channel

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, message: str) -> bool:
        if self._closed or self._dropped:
            return False
        self._queue.put_nowait(message)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(self._CLOSED)

    def drop(self) -> None:
        self._dropped = True

    async def __aiter__(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item


class ProgressSink:
    """Writes progress to the console and optionally to a job channel."""

    def __init__(
        self,
        channel: Optional[ProgressChannel] = None,
        *,
        console: Optional[TextIO] = None,
        error_console: Optional[TextIO] = None,
    ):
        self.channel = channel
        self._console = console
        self._error_console = error_console

    def emit(self, message: str, *, error: bool = False) -> None:
        stream = (self._error_console or sys.stderr) if error else (self._console or sys.stdout)
        print(message, file=stream, flush=True)
        if self.channel is None:
            return
        try:
            self.channel.send(message)
        except Exception as e:  # subscriber problems never fail the job
            logger.debug("progress_send_failed", error=str(e))

    def step(self, step: int, text: str) -> None:
        """Step boundary line, preceded by a blank line like the rest of the stream."""
        self.emit("\n" + step_line(step, text))

    def step_done(self, step: int, text: str) -> None:
        self.emit(step_line(step, text))

    def detail(self, text: str) -> None:
        self.emit(f"  {text}")
