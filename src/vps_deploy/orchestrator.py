"""Deployment orchestrator: runs a plan target by target."""

import asyncio
import signal
from typing import Optional

import structlog

from .config import DeployerConfig
from .errors import (
    ExecutionError,
    HealthCheckTimeout,
    RemoteUnreachable,
    RollbackFailed,
    RollbackImpossible,
)
from .executor import RemoteExecutor
from .health import HealthVerifier, Sleep
from .models import (
    DeploymentPlan,
    DeploymentReport,
    ExecutionRecord,
    Outcome,
    TargetPhase,
    utcnow,
)
from .remote.compose import ComposeEngine, ComposeError
from .rollback import RollbackController

logger = structlog.get_logger()


class Deployer:
    """Sequential selective deployer.

    Each target runs materialize, snapshot, activate and (optionally) verify
    to completion before the next target starts. Failures are scoped to
    their target.
    """

    def __init__(
        self,
        engine: ComposeEngine,
        health_check_interval: float = 2,
        health_check_timeout: float = 30,
        persist_snapshots: bool = True,
        sleep: Optional[Sleep] = None,
    ):
        """Initialize deployer.

        Args:
            engine: Compose engine for the deploy host
            health_check_interval: Seconds between health polls
            health_check_timeout: Seconds before a health check fails
            persist_snapshots: Write rollback snapshots to the host
            sleep: Coroutine used to wait between health polls
        """
        self.engine = engine
        self.rollback = RollbackController(engine)
        self.executor = RemoteExecutor(
            engine, self.rollback, persist_snapshots=persist_snapshots
        )
        self.verifier = HealthVerifier(
            engine,
            interval=health_check_interval,
            timeout=health_check_timeout,
            sleep=sleep,
        )
        self._cancelled = False
        self._current_target: Optional[str] = None

    @classmethod
    def from_config(cls, config: DeployerConfig, engine: ComposeEngine) -> "Deployer":
        return cls(
            engine,
            health_check_interval=config.health_check_interval,
            health_check_timeout=config.health_check_timeout,
            persist_snapshots=config.persist_snapshots,
        )

    def cancel(self) -> None:
        """Stop after the in-flight target; remaining targets are skipped."""
        logger.info("orchestrator.cancel_requested")
        if self._current_target:
            logger.warning(
                "orchestrator.cancel_during_target", target=self._current_target
            )
        self._cancelled = True

    async def run(
        self, plan: DeploymentPlan, install_signal_handlers: bool = False
    ) -> DeploymentReport:
        """Execute a plan.

        Args:
            plan: Validated deployment plan
            install_signal_handlers: Cancel on SIGINT/SIGTERM

        Returns:
            DeploymentReport with one record per target, in plan order
        """
        report = DeploymentReport(plan=plan)
        self._cancelled = False
        self.rollback.reset()

        loop = asyncio.get_running_loop()
        if install_signal_handlers:
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, self.cancel)

        logger.info(
            "orchestrator.starting",
            targets=list(plan.targets),
            mode=plan.mode.value,
            verify_health=plan.verify_health,
            dry_run=plan.dry_run,
        )

        try:
            for target in plan.targets:
                if self._cancelled:
                    report.cancelled = True
                    record = ExecutionRecord(target=target).finish(
                        Outcome.SKIPPED,
                        TargetPhase.SKIPPED,
                        error_detail="not started: deployment cancelled",
                    )
                    report.records.append(record)
                    continue

                self._current_target = target
                record = ExecutionRecord(target=target, phase=TargetPhase.DEPLOYING)
                try:
                    await self._deploy_target(record, plan)
                except Exception as e:
                    logger.error(
                        "orchestrator.target_crashed",
                        target=target,
                        error=str(e),
                        exc_info=True,
                    )
                    record.finish(
                        Outcome.EXECUTION_FAILED,
                        TargetPhase.FAILED,
                        error_code=type(e).__name__,
                        error_detail=str(e),
                    )
                finally:
                    self._current_target = None
                report.records.append(record)
        finally:
            if install_signal_handlers:
                for sig in (signal.SIGTERM, signal.SIGINT):
                    loop.remove_signal_handler(sig)
            self.rollback.discard()

        report.finished_at = utcnow()
        logger.info(
            "orchestrator.report",
            ok=report.ok,
            cancelled=report.cancelled,
            outcomes={r.target: r.outcome.value for r in report.records},
            failed=report.failed_targets,
            manual_action=report.manual_action_targets,
        )
        return report

    async def _deploy_target(
        self, record: ExecutionRecord, plan: DeploymentPlan
    ) -> ExecutionRecord:
        target = record.target
        logger.info("orchestrator.target_starting", target=target)

        if plan.dry_run:
            await self.executor.materialize(target, plan.mode, dry_run=True)
            await self.executor.snapshot(target, dry_run=True)
            await self.executor.activate(target, dry_run=True)
            record.commands = self.executor.describe(target, plan.mode)
            return record.finish(
                Outcome.SKIPPED, TargetPhase.SKIPPED, error_detail="dry run"
            )

        try:
            await self.executor.materialize(target, plan.mode)
            snapshot = await self.executor.snapshot(target)
            record.previous_image_ref = snapshot.previous_image_ref
            await self.executor.activate(target)
        except ExecutionError as e:
            return record.finish(
                Outcome.EXECUTION_FAILED, TargetPhase.FAILED, e.code, e.cause
            )
        record.phase = TargetPhase.ACTIVATED

        if not plan.verify_health:
            await self.executor.log_status(target)
            return record.finish(Outcome.SUCCESS, TargetPhase.DONE)

        try:
            state = await self.verifier.verify(target)
        except HealthCheckTimeout as failure:
            record.phase = TargetPhase.UNHEALTHY
            return await self._recover(record, plan, failure)

        record.phase = TargetPhase.HEALTHY
        record.deployed_image_ref = state.image_id
        detail = None
        if state.image_id:
            try:
                await self.rollback.commit(target, state.image_id)
            except (ComposeError, RemoteUnreachable) as e:
                logger.warning(
                    "orchestrator.known_good_not_recorded", target=target, error=str(e)
                )
                detail = f"healthy, but known-good reference not recorded: {e}"

        await self.executor.log_status(target)
        logger.info("orchestrator.target_succeeded", target=target)
        return record.finish(Outcome.SUCCESS, TargetPhase.DONE, error_detail=detail)

    async def _recover(
        self,
        record: ExecutionRecord,
        plan: DeploymentPlan,
        failure: HealthCheckTimeout,
    ) -> ExecutionRecord:
        target = record.target
        if not plan.rollback_on_failure:
            logger.error("orchestrator.unhealthy_no_rollback", target=target)
            return record.finish(
                Outcome.HEALTH_CHECK_FAILED,
                TargetPhase.UNHEALTHY,
                failure.code,
                failure.cause,
            )

        try:
            restored = await self.rollback.rollback(target)
        except RollbackImpossible as e:
            return record.finish(
                Outcome.EXECUTION_FAILED,
                TargetPhase.FAILED,
                e.code,
                f"{failure.cause}; rollback impossible: {e.cause}",
            )
        except RollbackFailed as e:
            logger.error(
                "orchestrator.manual_intervention_required",
                target=target,
                error=e.cause,
            )
            return record.finish(
                Outcome.ROLLED_BACK,
                TargetPhase.ROLLED_BACK,
                e.code,
                f"{failure.cause}; rollback failed: {e.cause}",
            )

        record.deployed_image_ref = restored
        return record.finish(
            Outcome.ROLLED_BACK,
            TargetPhase.ROLLED_BACK,
            failure.code,
            f"{failure.cause}; rolled back to {restored}",
        )
