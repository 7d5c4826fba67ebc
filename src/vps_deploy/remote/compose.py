"""Docker Compose engine driven over a remote channel."""

import shlex
from typing import Optional

import structlog

from ..models import ContainerState, ContainerStatus, DeployMode
from .channel import CommandResult, RemoteChannel

logger = structlog.get_logger()

STATE_FORMAT = "{{.State.Status}} {{.Image}} {{.Config.Image}}"
STATUS_FORMAT = "table {{.Names}}\\t{{.Status}}\\t{{.Ports}}"


class ComposeError(Exception):
    """Compose operation error."""

    def __init__(self, operation: str, service: str, result: CommandResult):
        super().__init__(f"{operation} {service} failed: {result.error}")
        self.operation = operation
        self.service = service
        self.result = result


class ComposeEngine:
    """Docker Compose operations, each scoped to exactly one service."""

    def __init__(
        self,
        channel: RemoteChannel,
        app_dir: str,
        rollback_dir: str,
        compose_command: str = "docker compose",
    ):
        """Initialize Compose engine.

        Args:
            channel: Channel commands run through
            app_dir: Compose project directory on the host
            rollback_dir: Directory for snapshot and known-good files
            compose_command: Compose invocation on the host
        """
        self.channel = channel
        self.app_dir = app_dir
        self.rollback_dir = rollback_dir
        self.compose_command = compose_command
        logger.info(
            "compose.engine_initialized",
            host=channel.host,
            app_dir=app_dir,
        )

    # Command builders

    def _in_project(self, command: str) -> str:
        return f"cd {shlex.quote(self.app_dir)} && {command}"

    def _compose(self, *args: str) -> str:
        return self._in_project(
            " ".join([self.compose_command, *(shlex.quote(a) for a in args)])
        )

    def _state_file(self, service: str, suffix: str) -> str:
        return shlex.quote(f"{self.rollback_dir.rstrip('/')}/{service}.{suffix}")

    def state_command(self, service: str) -> str:
        ps = " ".join([self.compose_command, "ps", "-aq", shlex.quote(service)])
        return self._in_project(
            f"cid=$({ps} | head -n 1); "
            'if [ -z "$cid" ]; then echo missing; '
            f'else docker inspect --format {shlex.quote(STATE_FORMAT)} "$cid"; fi'
        )

    def materialize_command(self, service: str, mode: DeployMode) -> str:
        verb = "build" if mode == DeployMode.BUILD else "pull"
        return self._compose(verb, service)

    def activate_command(self, service: str) -> str:
        return self._compose("up", "-d", "--no-deps", service)

    def stop_command(self, service: str) -> str:
        return self._compose("stop", service)

    def start_command(self, service: str, image_ref: str, image_name: str) -> str:
        tag = f"docker tag {shlex.quote(image_ref)} {shlex.quote(image_name)}"
        up = " ".join(
            [
                self.compose_command,
                "up",
                "-d",
                "--no-deps",
                "--force-recreate",
                shlex.quote(service),
            ]
        )
        return self._in_project(f"{tag} && {up}")

    def snapshot_command(self, service: str, image_ref: Optional[str]) -> str:
        return (
            f"mkdir -p {shlex.quote(self.rollback_dir)} && "
            f"echo {shlex.quote(image_ref or 'none')} > {self._state_file(service, 'image')}"
        )

    def read_known_good_command(self, service: str) -> str:
        return f"cat {self._state_file(service, 'good')} 2>/dev/null || true"

    def write_known_good_command(self, service: str, image_ref: str) -> str:
        return (
            f"mkdir -p {shlex.quote(self.rollback_dir)} && "
            f"echo {shlex.quote(image_ref)} > {self._state_file(service, 'good')}"
        )

    def status_command(self, service: str) -> str:
        return (
            f"docker ps --filter name={shlex.quote(service)} "
            f"--format {shlex.quote(STATUS_FORMAT)}"
        )

    # Operations

    async def _run(
        self, operation: str, service: str, command: str, mutating: bool
    ) -> CommandResult:
        result = await self.channel.run(command, mutating=mutating)
        if not result.ok:
            logger.warning(
                "compose.command_failed",
                operation=operation,
                service=service,
                exit_status=result.exit_status,
                stderr=result.stderr.strip(),
            )
            raise ComposeError(operation, service, result)
        return result

    async def state(self, service: str) -> ContainerState:
        """Query the run-state and bound image of a service container.

        Args:
            service: Compose service name

        Returns:
            ContainerState
        """
        result = await self._run(
            "inspect", service, self.state_command(service), mutating=False
        )
        return parse_state(result.output)

    async def materialize(self, service: str, mode: DeployMode) -> CommandResult:
        logger.info("compose.materializing", service=service, mode=mode.value)
        return await self._run(
            mode.value, service, self.materialize_command(service, mode), mutating=True
        )

    async def activate(self, service: str) -> CommandResult:
        logger.info("compose.activating", service=service)
        return await self._run(
            "up", service, self.activate_command(service), mutating=True
        )

    async def stop(self, service: str) -> CommandResult:
        logger.info("compose.stopping", service=service)
        return await self._run(
            "stop", service, self.stop_command(service), mutating=True
        )

    async def start(
        self, service: str, image_ref: str, image_name: str
    ) -> CommandResult:
        """Recreate a service container from a specific image.

        The image ID is re-tagged to the service's configured image name so
        Compose picks it up without rebuilding or pulling.

        Args:
            service: Compose service name
            image_ref: Image ID to run
            image_name: Image name the service is configured with

        Returns:
            CommandResult
        """
        logger.info("compose.starting", service=service, image=image_ref)
        return await self._run(
            "start",
            service,
            self.start_command(service, image_ref, image_name),
            mutating=True,
        )

    async def write_snapshot(self, service: str, image_ref: Optional[str]) -> None:
        await self._run(
            "snapshot", service, self.snapshot_command(service, image_ref), mutating=True
        )

    async def read_known_good(self, service: str) -> Optional[str]:
        result = await self._run(
            "read-known-good",
            service,
            self.read_known_good_command(service),
            mutating=False,
        )
        ref = result.output
        if not ref or ref == "none":
            return None
        return ref

    async def write_known_good(self, service: str, image_ref: str) -> None:
        await self._run(
            "write-known-good",
            service,
            self.write_known_good_command(service, image_ref),
            mutating=True,
        )

    async def status_line(self, service: str) -> str:
        result = await self._run(
            "ps", service, self.status_command(service), mutating=False
        )
        return result.output


def parse_state(output: str) -> ContainerState:
    """Parse the output of the state command.

    Args:
        output: ``missing`` or ``<status> <image id> <image name>``

    Returns:
        ContainerState
    """
    parts = output.split()
    if not parts or parts[0] == "missing":
        return ContainerState(status=ContainerStatus.MISSING)

    return ContainerState(
        status=ContainerStatus.from_docker(parts[0]),
        image_id=parts[1] if len(parts) > 1 else None,
        image_name=parts[2] if len(parts) > 2 else None,
    )
