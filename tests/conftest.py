"""Shared fixtures and test doubles for deployer tests."""

from typing import Dict, List, Optional, Set, Tuple

import pytest

from vps_deploy.errors import RemoteUnreachable
from vps_deploy.models import ContainerState, ContainerStatus, DeployMode
from vps_deploy.orchestrator import Deployer
from vps_deploy.remote.channel import CommandResult, RemoteChannel
from vps_deploy.remote.compose import ComposeEngine, ComposeError


class RecordingChannel(RemoteChannel):
    """Channel that records commands and replays scripted results.

    Each scripted result is either an exception to raise or an
    ``(exit_status, stdout)`` tuple.
    """

    def __init__(self, results=None, query_retries: int = 0):
        super().__init__(query_retries=query_retries)
        self.results = list(results or [])
        self.commands: List[str] = []
        self.mutating: List[bool] = []

    @property
    def host(self) -> str:
        return "fake-host"

    async def run(self, command: str, *, mutating: bool = True) -> CommandResult:
        self.mutating.append(mutating)
        return await super().run(command, mutating=mutating)

    async def _execute(self, command: str) -> CommandResult:
        self.commands.append(command)
        if not self.results:
            return CommandResult(command=command, stdout="", stderr="", exit_status=0)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        exit_status, stdout = result
        stderr = "" if exit_status == 0 else "boom"
        return CommandResult(
            command=command, stdout=stdout, stderr=stderr, exit_status=exit_status
        )


def compose_failure(operation: str, service: str, stderr: str = "boom") -> ComposeError:
    return ComposeError(
        operation,
        service,
        CommandResult(command=operation, stdout="", stderr=stderr, exit_status=1),
    )


class FakeEngine(ComposeEngine):
    """In-memory model of one deploy host.

    ``running`` maps each service to the image ID of its container.
    ``state_sequences`` scripts the statuses a service reports after it was
    activated; the last status repeats once the script is exhausted.
    ``failures`` maps ``(operation, service)`` to an exception to raise.
    """

    def __init__(self):
        super().__init__(
            channel=RecordingChannel(),
            app_dir="/opt/apps",
            rollback_dir="/opt/apps/.rollback",
        )
        self.calls: List[Tuple[str, str]] = []
        self.running: Dict[str, str] = {}
        self.image_names: Dict[str, str] = {}
        self.known_good: Dict[str, str] = {}
        self.snapshots: Dict[str, Optional[str]] = {}
        self.available: Dict[str, str] = {}
        self.materialized: Dict[str, str] = {}
        self.state_sequences: Dict[str, List[str]] = {}
        self.failures: Dict[Tuple[str, str], Exception] = {}
        self.activated: Set[str] = set()
        self.stopped: Set[str] = set()

    def add_service(
        self, name: str, image: Optional[str] = None, known_good: Optional[str] = None
    ) -> None:
        if image:
            self.running[name] = image
        self.image_names[name] = f"registry/{name}:latest"
        if known_good:
            self.known_good[name] = known_good

    def ops(self, service: Optional[str] = None) -> List[str]:
        return [op for op, svc in self.calls if service is None or svc == service]

    def _call(self, operation: str, service: str) -> None:
        self.calls.append((operation, service))
        failure = self.failures.get((operation, service))
        if failure is not None:
            raise failure

    async def state(self, service: str) -> ContainerState:
        self._call("state", service)
        if service not in self.running:
            return ContainerState(status=ContainerStatus.MISSING)

        status = "running"
        sequence = self.state_sequences.get(service)
        if service in self.activated and sequence:
            status = sequence.pop(0) if len(sequence) > 1 else sequence[0]
        if service in self.stopped:
            status = "exited"

        return ContainerState(
            status=ContainerStatus(status),
            image_id=self.running[service],
            image_name=self.image_names.get(service),
        )

    async def materialize(self, service: str, mode: DeployMode) -> None:
        self._call("materialize", service)
        self.materialized[service] = self.available.get(service, f"sha256:{service}-new")

    async def activate(self, service: str) -> None:
        self._call("activate", service)
        self.running[service] = self.materialized.get(
            service, self.running.get(service, f"sha256:{service}-new")
        )
        self.activated.add(service)
        self.stopped.discard(service)

    async def stop(self, service: str) -> None:
        self._call("stop", service)
        self.stopped.add(service)

    async def start(self, service: str, image_ref: str, image_name: str) -> None:
        self._call("start", service)
        self.running[service] = image_ref
        self.activated.discard(service)
        self.stopped.discard(service)

    async def write_snapshot(self, service: str, image_ref: Optional[str]) -> None:
        self._call("write_snapshot", service)
        self.snapshots[service] = image_ref

    async def read_known_good(self, service: str) -> Optional[str]:
        self._call("read_known_good", service)
        return self.known_good.get(service)

    async def write_known_good(self, service: str, image_ref: str) -> None:
        self._call("write_known_good", service)
        self.known_good[service] = image_ref

    async def status_line(self, service: str) -> str:
        self._call("status_line", service)
        return f"{service}   Up 2 seconds"


class SleepRecorder:
    """No-op replacement for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)

    @property
    def elapsed(self) -> float:
        return sum(self.delays)


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def sleep():
    return SleepRecorder()


@pytest.fixture
def deployer(engine, sleep):
    return Deployer(engine, health_check_interval=2, health_check_timeout=30, sleep=sleep)


@pytest.fixture
def unreachable():
    return RemoteUnreachable("cannot reach deploy@vps: Connection timed out")
