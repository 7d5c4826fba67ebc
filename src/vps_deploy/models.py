"""Pydantic models for plans, records and reports."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .errors import MANUAL_ACTION_CODES


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeployMode(str, Enum):
    """How a target's image is materialized."""

    BUILD = "build"
    PULL = "pull"


class ContainerStatus(str, Enum):
    """Run-state of a service container."""

    RUNNING = "running"
    RESTARTING = "restarting"
    EXITED = "exited"
    MISSING = "missing"

    @classmethod
    def from_docker(cls, value: str) -> "ContainerStatus":
        """Map a Docker ``.State.Status`` value onto the reduced set."""
        value = value.strip().lower()
        if value == "running":
            return cls.RUNNING
        if value == "restarting":
            return cls.RESTARTING
        if not value or value == "missing":
            return cls.MISSING
        # created, paused, removing, exited, dead
        return cls.EXITED


class Outcome(str, Enum):
    """Terminal outcome of one target."""

    SUCCESS = "success"
    HEALTH_CHECK_FAILED = "health_check_failed"
    EXECUTION_FAILED = "execution_failed"
    ROLLED_BACK = "rolled_back"
    SKIPPED = "skipped"


class TargetPhase(str, Enum):
    """Per-target state machine."""

    PENDING = "pending"
    DEPLOYING = "deploying"
    ACTIVATED = "activated"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    DONE = "done"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"
    SKIPPED = "skipped"


class ContainerState(BaseModel):
    """State of one service container as reported by the engine."""

    status: ContainerStatus
    image_id: Optional[str] = None
    image_name: Optional[str] = None


class ServiceTarget(BaseModel):
    """A deployable Compose service and its image references."""

    name: str
    current_image_ref: Optional[str] = None
    last_known_good_ref: Optional[str] = None


class DeploymentPlan(BaseModel):
    """Validated, ordered set of targets and options for one invocation."""

    model_config = ConfigDict(frozen=True)

    targets: Tuple[str, ...]
    mode: DeployMode = DeployMode.PULL
    verify_health: bool = False
    dry_run: bool = False
    rollback_on_failure: bool = True


class RollbackSnapshot(BaseModel):
    """Image references captured before a target is mutated."""

    target: str
    previous_image_ref: Optional[str] = None
    previous_image_name: Optional[str] = None
    last_known_good_ref: Optional[str] = None
    taken_at: datetime = Field(default_factory=utcnow)


class ExecutionRecord(BaseModel):
    """Result of attempting one target's deployment."""

    target: str
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    outcome: Optional[Outcome] = None
    phase: TargetPhase = TargetPhase.PENDING
    error_code: Optional[str] = None
    error_detail: Optional[str] = None
    previous_image_ref: Optional[str] = None
    deployed_image_ref: Optional[str] = None
    commands: List[str] = Field(default_factory=list)

    @property
    def requires_manual_action(self) -> bool:
        return self.error_code in MANUAL_ACTION_CODES

    @property
    def duration(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def finish(
        self,
        outcome: Outcome,
        phase: TargetPhase,
        error_code: Optional[str] = None,
        error_detail: Optional[str] = None,
    ) -> "ExecutionRecord":
        """Finalize the record with its terminal outcome."""
        self.outcome = outcome
        self.phase = phase
        self.error_code = error_code
        self.error_detail = error_detail
        self.finished_at = utcnow()
        return self


class DeploymentReport(BaseModel):
    """Aggregated records of one invocation."""

    plan: DeploymentPlan
    records: List[ExecutionRecord] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    cancelled: bool = False

    @property
    def failed_targets(self) -> List[str]:
        return [
            r.target
            for r in self.records
            if r.outcome not in (Outcome.SUCCESS, Outcome.SKIPPED)
        ]

    @property
    def manual_action_targets(self) -> List[str]:
        return [r.target for r in self.records if r.requires_manual_action]

    @property
    def ok(self) -> bool:
        """True when every target succeeded, or was skipped by a dry run."""
        for record in self.records:
            if record.outcome == Outcome.SUCCESS:
                continue
            if record.outcome == Outcome.SKIPPED and self.plan.dry_run:
                continue
            return False
        return True

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def get(self, target: str) -> Optional[ExecutionRecord]:
        for record in self.records:
            if record.target == target:
                return record
        return None
