"""Tests for remote command channels."""

import os
import subprocess
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from vps_deploy.errors import RemoteUnreachable
from vps_deploy.remote.channel import CommandResult, LocalChannel, SSHChannel

from .conftest import RecordingChannel


def completed(returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(
        args=["ssh"], returncode=returncode, stdout=stdout, stderr=stderr
    )


class TestRetryPolicy:
    """Read-only commands are retried, mutating commands are not."""

    @pytest.mark.asyncio
    async def test_read_only_retried_on_connection_failure(self):
        channel = RecordingChannel(
            results=[RemoteUnreachable("reset"), (0, "running")], query_retries=2
        )
        result = await channel.run("docker inspect web", mutating=False)
        assert result.output == "running"
        assert len(channel.commands) == 2

    @pytest.mark.asyncio
    async def test_read_only_gives_up_after_retries(self):
        channel = RecordingChannel(
            results=[RemoteUnreachable("down")] * 3, query_retries=2
        )
        with pytest.raises(RemoteUnreachable):
            await channel.run("docker inspect web", mutating=False)
        assert len(channel.commands) == 3

    @pytest.mark.asyncio
    async def test_mutating_never_retried(self):
        channel = RecordingChannel(
            results=[RemoteUnreachable("down"), (0, "")], query_retries=5
        )
        with pytest.raises(RemoteUnreachable):
            await channel.run("docker compose up -d --no-deps web", mutating=True)
        assert len(channel.commands) == 1

    @pytest.mark.asyncio
    async def test_command_failure_is_not_retried(self):
        channel = RecordingChannel(results=[(1, "")], query_retries=2)
        result = await channel.run("docker inspect web", mutating=False)
        assert not result.ok
        assert len(channel.commands) == 1


class TestSSHChannel:
    """Test the OpenSSH-backed channel."""

    def test_argv(self):
        channel = SSHChannel("deploy@vps", connect_timeout=7, ssh_options=["-p", "2222"])
        assert channel.build_argv("uptime") == [
            "ssh",
            "-o",
            "BatchMode=yes",
            "-o",
            "ConnectTimeout=7",
            "-p",
            "2222",
            "deploy@vps",
            "uptime",
        ]

    @pytest.mark.asyncio
    async def test_returns_command_result(self):
        channel = SSHChannel("deploy@vps")
        with patch("subprocess.run", return_value=completed(0, "ok\n")) as run:
            result = await channel.run("echo ok")
        assert result == CommandResult("echo ok", "ok\n", "", 0)
        assert run.call_args.kwargs["timeout"] == channel.command_timeout

    @pytest.mark.asyncio
    async def test_remote_failure_is_a_result(self):
        channel = SSHChannel("deploy@vps")
        with patch("subprocess.run", return_value=completed(1, "", "no such service")):
            result = await channel.run("docker compose pull nope")
        assert not result.ok
        assert result.error == "no such service"

    @pytest.mark.asyncio
    async def test_ssh_error_status_means_unreachable(self):
        channel = SSHChannel("deploy@vps")
        with patch(
            "subprocess.run",
            return_value=completed(255, "", "ssh: connect to host vps port 22: Connection refused"),
        ):
            with pytest.raises(RemoteUnreachable, match="Connection refused"):
                await channel.run("uptime")

    @pytest.mark.asyncio
    async def test_timeout_means_unreachable(self):
        channel = SSHChannel("deploy@vps", command_timeout=1)
        with patch(
            "subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="ssh", timeout=1)
        ):
            with pytest.raises(RemoteUnreachable, match="timed out"):
                await channel.run("sleep 5")


class TestLocalChannel:
    """Test the on-host channel."""

    @pytest.mark.asyncio
    async def test_runs_through_bash(self):
        channel = LocalChannel()
        with patch("subprocess.run", return_value=completed(0, "hi")) as run:
            result = await channel.run("echo hi")
        assert result.output == "hi"
        assert run.call_args.args[0] == ["bash", "-c", "echo hi"]
        assert run.call_args.kwargs["start_new_session"] is True
        assert channel.host == "local"


def test_error_falls_back_to_exit_status():
    assert CommandResult("x", "", "", 3).error == "exit status 3"


@pytest.mark.asyncio
async def test_ssh_runs_in_its_own_session():
    channel = SSHChannel("deploy@vps")
    with patch("subprocess.run", return_value=completed(0)) as run:
        await channel.run("true")
    assert run.call_args.kwargs["start_new_session"] is True


INTERRUPTED_COMMAND = """
import asyncio, os, signal
from vps_deploy.remote.channel import LocalChannel

async def main():
    loop = asyncio.get_running_loop()
    caught = []
    loop.add_signal_handler(signal.SIGINT, caught.append, "SIGINT")
    loop.call_later(0.5, os.killpg, os.getpgid(0), signal.SIGINT)
    result = await LocalChannel().run("sleep 1.5; echo done")
    print(result.exit_status, result.output, ",".join(caught))

asyncio.run(main())
"""


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX process groups")
def test_ctrl_c_does_not_kill_in_flight_command():
    """SIGINT sent to the deployer's process group spares the remote command."""
    src = str(Path(__file__).resolve().parents[1] / "src")
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [src, env.get("PYTHONPATH")]))

    # Own session, so the group-wide SIGINT stays away from the test runner.
    proc = subprocess.run(
        [sys.executable, "-c", INTERRUPTED_COMMAND],
        capture_output=True,
        text=True,
        env=env,
        timeout=30,
        start_new_session=True,
    )

    assert proc.returncode == 0, proc.stderr
    assert proc.stdout.strip().splitlines()[-1] == "0 done SIGINT"
