"""Tests for progress fan-out."""

import io

import pytest

from clawdeploy.progress import (
    ProgressChannel,
    ProgressSink,
    complete_marker,
    error_marker,
    is_terminal,
    parse_step,
    step_line,
)


class TestProtocol:
    def test_step_line_round_trips_through_parser(self):
        assert parse_step(step_line(7, "Waiting")) == (7, 16)

    def test_plain_lines_have_no_step(self):
        assert parse_step("  Key saved: /x") is None

    def test_terminal_markers(self):
        assert complete_marker("1.2.3.4", "/k", "openclaw-ab") == "DEPLOY_COMPLETE:1.2.3.4:/k:openclaw-ab"
        assert is_terminal(error_marker("boom"))
        assert not is_terminal("[Step 1/16] Resolving parameters...")


@pytest.mark.asyncio
class TestProgressChannel:
    async def test_fifo_then_closes(self):
        channel = ProgressChannel()
        for message in ("a", "b", "c"):
            channel.send(message)
        channel.close()

        assert [m async for m in channel] == ["a", "b", "c"]

    async def test_closed_channel_yields_nothing(self):
        assert [m async for m in ProgressChannel.closed_channel()] == []

    async def test_send_after_close_or_drop_is_discarded(self):
        channel = ProgressChannel()
        channel.drop()
        assert channel.send("lost") is False
        channel.close()
        assert channel.send("late") is False
        assert [m async for m in channel] == []


@pytest.mark.asyncio
class TestProgressSink:
    async def test_console_and_channel_get_same_lines(self):
        out, err = io.StringIO(), io.StringIO()
        channel = ProgressChannel()
        sink = ProgressSink(channel, console=out, error_console=err)

        sink.step(1, "Resolving parameters...")
        sink.detail("Region:   sgp1")
        sink.emit("bad news", error=True)
        channel.close()

        messages = [m async for m in channel]
        assert messages == ["\n[Step 1/16] Resolving parameters...", "  Region:   sgp1", "bad news"]
        assert "[Step 1/16]" in out.getvalue()
        assert "bad news" in err.getvalue()
        assert "bad news" not in out.getvalue()

    async def test_console_only(self):
        out = io.StringIO()
        sink = ProgressSink(console=out)

        sink.detail("hello")

        assert out.getvalue() == "  hello\n"

    async def test_dropped_subscriber_does_not_fail_emit(self):
        channel = ProgressChannel()
        channel.drop()
        sink = ProgressSink(channel, console=io.StringIO())

        sink.emit("still printed")
