"""Remote executor: materialize, snapshot and activate single targets."""

from typing import List, Optional

import structlog

from .errors import (
    ActivateFailed,
    MaterializeFailed,
    RemoteUnreachable,
    SnapshotUnavailable,
)
from .models import DeployMode, RollbackSnapshot
from .remote.compose import ComposeEngine, ComposeError
from .rollback import RollbackController

logger = structlog.get_logger()


class RemoteExecutor:
    """Runs the mutating steps of a deployment for one target at a time."""

    def __init__(
        self,
        engine: ComposeEngine,
        rollback: RollbackController,
        persist_snapshots: bool = True,
    ):
        """Initialize executor.

        Args:
            engine: Compose engine for the deploy host
            rollback: Controller that owns rollback snapshots
            persist_snapshots: Also write snapshots to the host
        """
        self.engine = engine
        self.rollback = rollback
        self.persist_snapshots = persist_snapshots

    def describe(self, target: str, mode: DeployMode) -> List[str]:
        """Commands a live run would execute for a target, in order."""
        commands = [
            self.engine.materialize_command(target, mode),
            self.engine.state_command(target),
            self.engine.read_known_good_command(target),
        ]
        if self.persist_snapshots:
            commands.append(self.engine.snapshot_command(target, "<current image>"))
        commands.append(self.engine.activate_command(target))
        return commands

    async def materialize(
        self, target: str, mode: DeployMode, *, dry_run: bool = False
    ) -> None:
        """Build or pull the target's image without touching its container.

        Raises:
            MaterializeFailed: On non-zero exit status or unreachable host
        """
        if dry_run:
            logger.info(
                "executor.dry_run",
                step=mode.value,
                command=self.engine.materialize_command(target, mode),
            )
            return

        try:
            await self.engine.materialize(target, mode)
        except ComposeError as e:
            logger.error("executor.materialize.failed", target=target, error=str(e))
            raise MaterializeFailed(target, e.result.error) from e
        except RemoteUnreachable as e:
            logger.error("executor.materialize.unreachable", target=target, error=e.message)
            raise MaterializeFailed(target, e.message) from e

        logger.info("executor.materialized", target=target, mode=mode.value)

    async def snapshot(
        self, target: str, *, dry_run: bool = False
    ) -> Optional[RollbackSnapshot]:
        """Record the target's current image as its rollback point.

        Raises:
            SnapshotUnavailable: If the current state cannot be read
        """
        if dry_run:
            logger.info(
                "executor.dry_run",
                step="snapshot",
                command=self.engine.state_command(target),
            )
            return None

        try:
            state = await self.engine.state(target)
            known_good = await self.engine.read_known_good(target)
        except (ComposeError, RemoteUnreachable) as e:
            logger.error("executor.snapshot.failed", target=target, error=str(e))
            raise SnapshotUnavailable(target, f"cannot read current state: {e}") from e

        snapshot = RollbackSnapshot(
            target=target,
            previous_image_ref=state.image_id,
            previous_image_name=state.image_name,
            last_known_good_ref=known_good,
        )
        self.rollback.record(snapshot)

        if self.persist_snapshots:
            try:
                await self.engine.write_snapshot(target, state.image_id)
            except (ComposeError, RemoteUnreachable) as e:
                logger.warning(
                    "executor.snapshot.persist_failed", target=target, error=str(e)
                )

        return snapshot

    async def activate(self, target: str, *, dry_run: bool = False) -> None:
        """Replace the target's running container, leaving other services alone.

        Raises:
            SnapshotUnavailable: If no rollback point was recorded first
            ActivateFailed: On non-zero exit status or unreachable host
        """
        if dry_run:
            logger.info(
                "executor.dry_run",
                step="activate",
                command=self.engine.activate_command(target),
            )
            return

        if not self.rollback.has_snapshot(target):
            raise SnapshotUnavailable(target, "refusing to activate without a rollback point")

        try:
            await self.engine.activate(target)
        except ComposeError as e:
            logger.error("executor.activate.failed", target=target, error=str(e))
            raise ActivateFailed(target, e.result.error) from e
        except RemoteUnreachable as e:
            logger.error("executor.activate.unreachable", target=target, error=e.message)
            raise ActivateFailed(target, e.message) from e

        logger.info("executor.activated", target=target)

    async def log_status(self, target: str) -> None:
        """Log the container status line of a deployed target."""
        try:
            line = await self.engine.status_line(target)
        except (ComposeError, RemoteUnreachable) as e:
            logger.warning("executor.status_unavailable", target=target, error=str(e))
            return
        logger.info("executor.container_status", target=target, status=line)
