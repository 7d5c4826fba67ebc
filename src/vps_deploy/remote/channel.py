"""Remote command-execution channels."""

import asyncio
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

import structlog

from ..errors import RemoteUnreachable

logger = structlog.get_logger()

# OpenSSH reserves exit status 255 for its own (connection-level) errors.
SSH_CONNECTION_ERROR = 255


@dataclass
class CommandResult:
    """Result of one remote command."""

    command: str
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def output(self) -> str:
        return self.stdout.strip()

    @property
    def error(self) -> str:
        """Best human-readable failure text."""
        return self.stderr.strip() or self.stdout.strip() or f"exit status {self.exit_status}"


class RemoteChannel(ABC):
    """Base class for channels that run shell commands on the deploy host."""

    def __init__(self, query_retries: int = 0):
        self.query_retries = query_retries

    @property
    @abstractmethod
    def host(self) -> str:
        """Descriptor of the host commands run on."""

    @abstractmethod
    async def _execute(self, command: str) -> CommandResult:
        """Run a command once.

        Args:
            command: Shell command string

        Returns:
            CommandResult

        Raises:
            RemoteUnreachable: If the host could not be reached
        """

    async def run(self, command: str, *, mutating: bool = True) -> CommandResult:
        """Run a command on the host.

        Read-only commands are retried on connection-level failure; mutating
        commands run exactly once.

        Args:
            command: Shell command string
            mutating: Whether the command changes remote state

        Returns:
            CommandResult

        Raises:
            RemoteUnreachable: If the host could not be reached
        """
        attempts = 1 if mutating else 1 + self.query_retries
        attempt = 1
        while True:
            try:
                result = await self._execute(command)
            except RemoteUnreachable as e:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "channel.retrying",
                    host=self.host,
                    attempt=attempt,
                    error=e.message,
                )
                attempt += 1
                continue

            logger.debug(
                "channel.command_finished",
                host=self.host,
                command=command,
                exit_status=result.exit_status,
            )
            return result


class SSHChannel(RemoteChannel):
    """Runs commands through the OpenSSH client."""

    def __init__(
        self,
        remote: str,
        connect_timeout: int = 30,
        command_timeout: int = 600,
        query_retries: int = 0,
        ssh_options: Optional[Sequence[str]] = None,
    ):
        """Initialize SSH channel.

        Args:
            remote: SSH target (user@host)
            connect_timeout: Connection timeout in seconds
            command_timeout: Timeout for one command in seconds
            query_retries: Retries for read-only commands
            ssh_options: Extra ssh arguments
        """
        super().__init__(query_retries=query_retries)
        self.remote = remote
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.ssh_options = list(ssh_options or [])

    @property
    def host(self) -> str:
        return self.remote

    def build_argv(self, command: str) -> List[str]:
        return [
            "ssh",
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={self.connect_timeout}",
            *self.ssh_options,
            self.remote,
            command,
        ]

    async def _execute(self, command: str) -> CommandResult:
        try:
            proc = await asyncio.to_thread(
                subprocess.run,
                self.build_argv(command),
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
                start_new_session=True,
            )
        except subprocess.TimeoutExpired as e:
            logger.error("channel.ssh.timeout", host=self.remote, command=command)
            raise RemoteUnreachable(
                f"command timed out after {self.command_timeout}s on {self.remote}"
            ) from e
        except OSError as e:
            raise RemoteUnreachable(f"cannot run ssh: {e}") from e

        if proc.returncode == SSH_CONNECTION_ERROR:
            raise RemoteUnreachable(
                f"cannot reach {self.remote}: {proc.stderr.strip() or 'ssh error'}"
            )

        return CommandResult(
            command=command,
            stdout=proc.stdout,
            stderr=proc.stderr,
            exit_status=proc.returncode,
        )


class LocalChannel(RemoteChannel):
    """Runs commands on this host through bash, for use on the VPS itself."""

    def __init__(self, command_timeout: int = 600):
        super().__init__(query_retries=0)
        self.command_timeout = command_timeout

    @property
    def host(self) -> str:
        return "local"

    async def _execute(self, command: str) -> CommandResult:
        try:
            proc = await asyncio.to_thread(
                subprocess.run,
                ["bash", "-c", command],
                capture_output=True,
                text=True,
                timeout=self.command_timeout,
                start_new_session=True,
            )
        except subprocess.TimeoutExpired as e:
            raise RemoteUnreachable(
                f"command timed out after {self.command_timeout}s"
            ) from e

        return CommandResult(
            command=command,
            stdout=proc.stdout,
            stderr=proc.stderr,
            exit_status=proc.returncode,
        )
