"""Rollback controller: owns snapshots, commits known-good state, restores it."""

from typing import Dict, Optional

import structlog

from .errors import RemoteUnreachable, RollbackFailed, RollbackImpossible
from .models import RollbackSnapshot, ServiceTarget
from .remote.compose import ComposeEngine, ComposeError

logger = structlog.get_logger()


class RollbackController:
    """Holds the rollback point of every target for one invocation.

    Snapshots are written before a target is mutated and only read when the
    target fails verification. A known-good reference is committed only after
    a successful health verification.
    """

    def __init__(self, engine: ComposeEngine):
        self.engine = engine
        self._snapshots: Dict[str, RollbackSnapshot] = {}
        self.targets: Dict[str, ServiceTarget] = {}

    def record(self, snapshot: RollbackSnapshot) -> None:
        self._snapshots[snapshot.target] = snapshot
        self.targets[snapshot.target] = ServiceTarget(
            name=snapshot.target,
            current_image_ref=snapshot.previous_image_ref,
            last_known_good_ref=snapshot.last_known_good_ref,
        )
        logger.info(
            "rollback.snapshot_recorded",
            target=snapshot.target,
            previous_image=snapshot.previous_image_ref,
            known_good=snapshot.last_known_good_ref,
        )

    def has_snapshot(self, target: str) -> bool:
        return target in self._snapshots

    def get(self, target: str) -> Optional[RollbackSnapshot]:
        return self._snapshots.get(target)

    def discard(self) -> None:
        """Drop all snapshots at the end of an invocation.

        ``targets`` is kept so callers can read the outcome of the last run;
        it is cleared by ``reset`` when the next run starts.
        """
        self._snapshots.clear()

    def reset(self) -> None:
        """Forget snapshots and targets of a previous invocation."""
        self._snapshots.clear()
        self.targets.clear()

    async def commit(self, target: str, image_ref: str) -> None:
        """Record a verified image as the target's known-good reference.

        Args:
            target: Service name
            image_ref: Image ID that passed verification
        """
        await self.engine.write_known_good(target, image_ref)
        service = self.targets.setdefault(target, ServiceTarget(name=target))
        service.current_image_ref = image_ref
        service.last_known_good_ref = image_ref
        logger.info("rollback.known_good_committed", target=target, image=image_ref)

    async def rollback(self, target: str) -> str:
        """Restore a target to its last known-good image.

        Args:
            target: Service name

        Returns:
            The image reference that was restored

        Raises:
            RollbackImpossible: If no known-good reference exists
            RollbackFailed: If stopping or restarting the container failed
        """
        snapshot = self._snapshots.get(target)
        known_good = snapshot.last_known_good_ref if snapshot else None
        if not known_good:
            logger.error("rollback.impossible", target=target)
            raise RollbackImpossible(target, "no previous known-good state")

        logger.warning("rollback.starting", target=target, image=known_good)
        try:
            image_name = snapshot.previous_image_name
            if not image_name:
                image_name = (await self.engine.state(target)).image_name
            if not image_name:
                raise RollbackFailed(target, "cannot determine the service's image name")

            await self.engine.stop(target)
            await self.engine.start(target, known_good, image_name)
        except (ComposeError, RemoteUnreachable) as e:
            logger.error(
                "rollback.failed",
                target=target,
                image=known_good,
                error=str(e),
                hint=f"Manual rollback needed. Check logs: docker logs {target} --tail 50",
            )
            raise RollbackFailed(
                target, f"restoring {known_good} failed: {e}"
            ) from e

        service = self.targets.setdefault(target, ServiceTarget(name=target))
        service.current_image_ref = known_good
        logger.info("rollback.completed", target=target, image=known_good)
        return known_good
