"""Health verifier: polls a container until its run-state is stable."""

import asyncio
from typing import Awaitable, Callable, Optional

import structlog

from .errors import HealthCheckTimeout, RemoteUnreachable
from .models import ContainerState, ContainerStatus
from .remote.compose import ComposeEngine, ComposeError

logger = structlog.get_logger()

Sleep = Callable[[float], Awaitable[None]]


class HealthVerifier:
    """Decides whether an activated target is healthy.

    A target is healthy once a ``running`` reading is confirmed by another
    ``running`` reading one full interval later. Two consecutive
    ``restarting`` readings mean the container is crash-looping.

    Polling is also bounded by elapsed time: when slow state queries push
    the check past the timeout, it fails without using up the remaining polls.
    """

    def __init__(
        self,
        engine: ComposeEngine,
        interval: float = 2,
        timeout: float = 30,
        sleep: Optional[Sleep] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize verifier.

        Args:
            engine: Compose engine used for state queries
            interval: Seconds between polls
            timeout: Seconds before giving up
            sleep: Coroutine used to wait between polls
            clock: Monotonic time source, defaults to the event loop clock
        """
        self.engine = engine
        self.interval = interval
        self.timeout = timeout
        self._sleep = sleep or asyncio.sleep
        self._clock = clock

    @property
    def max_polls(self) -> int:
        # Polls happen at 0, interval, ... up to and including the timeout.
        return int(self.timeout // self.interval) + 1

    async def _query(self, target: str) -> Optional[ContainerState]:
        try:
            return await self.engine.state(target)
        except (ComposeError, RemoteUnreachable) as e:
            logger.warning("health.query_failed", target=target, error=str(e))
            return None

    async def verify(self, target: str) -> ContainerState:
        """Poll a target until it is stably running.

        Args:
            target: Service name

        Returns:
            The confirming ContainerState

        Raises:
            HealthCheckTimeout: If the target is not stable within the
                timeout, or is crash-looping
        """
        logger.info(
            "health.starting",
            target=target,
            interval=self.interval,
            timeout=self.timeout,
        )
        clock = self._clock or asyncio.get_running_loop().time
        # Half an interval of slack so the poll at the timeout itself still runs.
        deadline = clock() + self.timeout + self.interval / 2
        running_since: Optional[int] = None
        restarting_streak = 0

        for poll in range(self.max_polls):
            if poll:
                await self._sleep(self.interval)
                if clock() > deadline:
                    break

            state = await self._query(target)
            status = state.status if state else None
            logger.debug(
                "health.poll",
                target=target,
                elapsed=poll * self.interval,
                status=status.value if status else "unknown",
            )

            if status == ContainerStatus.RUNNING:
                restarting_streak = 0
                if running_since is None:
                    running_since = poll
                elif poll > running_since:
                    logger.info(
                        "health.healthy",
                        target=target,
                        elapsed=poll * self.interval,
                        image=state.image_id,
                    )
                    return state
                continue

            running_since = None
            if status == ContainerStatus.RESTARTING:
                restarting_streak += 1
                logger.warning("health.restarting", target=target)
                if restarting_streak > 1:
                    raise HealthCheckTimeout(
                        target,
                        "container is crash-looping (restarting on consecutive checks)",
                    )
            else:
                restarting_streak = 0

        logger.error("health.timeout", target=target, timeout=self.timeout)
        raise HealthCheckTimeout(
            target, f"not stably running within {self.timeout:g}s"
        )
