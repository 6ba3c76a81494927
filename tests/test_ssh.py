"""Tests for key generation and the service-user wrapper."""

import shlex
import stat

import pytest
from cryptography.hazmat.primitives.serialization import load_ssh_private_key

from clawdeploy.errors import LocalIOError
from clawdeploy.ssh import RemoteGateway, drain_channel, generate_keypair, wrap_as_service_user


class TestGenerateKeypair:
    def test_private_key_mode_and_format(self, tmp_path):
        keypair = generate_keypair(tmp_path / "keys", "0123456789abcdef")

        path = keypair.private_key_path
        assert path == tmp_path / "keys" / "clawdeploy_0123456789abcdef"
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        load_ssh_private_key(path.read_bytes(), password=None)

    def test_public_key_line(self, tmp_path):
        keypair = generate_keypair(tmp_path, "0123456789abcdef")

        assert keypair.public_key_openssh.startswith("ssh-ed25519 ")
        assert keypair.public_key_openssh.endswith(" clawdeploy-01234567")

    def test_unwritable_directory(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")

        with pytest.raises(LocalIOError):
            generate_keypair(blocker, "0123456789abcdef")


class TestWrapAsServiceUser:
    def test_quotes_command(self):
        wrapped = wrap_as_service_user("echo 'hi' && echo $HOME")

        assert wrapped.startswith("su - openclaw -c ")
        assert shlex.split(wrapped)[-1] == "echo 'hi' && echo $HOME"

    def test_other_user(self):
        assert wrap_as_service_user("id", user="svc") == "su - svc -c id"


def test_upload_missing_local_file(tmp_path):
    gateway = RemoteGateway(max_workers=1)
    try:
        with pytest.raises(LocalIOError):
            gateway.put_file("203.0.113.10", tmp_path / "key", tmp_path / "missing.tar.gz", "/tmp/x")
    finally:
        gateway.shutdown()


class ScriptedChannel:
    """Exec channel stand-in that hands out queued chunks, then reports exit."""

    def __init__(self, stdout, stderr):
        self.stdout = list(stdout)
        self.stderr = list(stderr)
        self.closed = False
        self.eof_received = True

    def recv_ready(self):
        return bool(self.stdout)

    def recv(self, size):
        return self.stdout.pop(0)

    def recv_stderr_ready(self):
        return bool(self.stderr)

    def recv_stderr(self, size):
        return self.stderr.pop(0)

    def exit_status_ready(self):
        return not self.stdout and not self.stderr


class TestDrainChannel:
    def test_collects_both_streams(self):
        noisy = [b"e" * 32768] * 100
        channel = ScriptedChannel([b"out-1\n", b"out-2\n"], noisy)

        stdout, stderr = drain_channel(channel, timeout=1)

        assert stdout == b"out-1\nout-2\n"
        assert len(stderr) == 32768 * 100

    def test_empty_output(self):
        assert drain_channel(ScriptedChannel([], []), timeout=1) == (b"", b"")
