"""Error taxonomy for planning, execution and verification."""

from typing import Optional


class DeployError(Exception):
    """Base class for deployer errors."""

    code = "DeployError"

    def __init__(self, message: str, target: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.target = target


# Planning-time errors abort the whole invocation before any remote call.


class PlanningError(DeployError):
    """Plan could not be built."""

    code = "PlanningError"


class InvalidTarget(PlanningError):
    """Target name is empty, malformed or duplicated."""

    code = "InvalidTarget"


class EmptyPlan(PlanningError):
    """No targets were requested."""

    code = "EmptyPlan"


# Execution-time errors are scoped to one target.


class ExecutionError(DeployError):
    """A mutating step failed for one target."""

    code = "ExecutionError"

    def __init__(self, target: str, cause: str):
        super().__init__(f"{target}: {cause}", target=target)
        self.cause = cause


class MaterializeFailed(ExecutionError):
    """Image build or pull failed."""

    code = "MaterializeFailed"


class SnapshotUnavailable(ExecutionError):
    """Current state could not be read before activation."""

    code = "SnapshotUnavailable"


class ActivateFailed(ExecutionError):
    """Container could not be replaced."""

    code = "ActivateFailed"


# Verification-time errors.


class VerificationError(ExecutionError):
    """Health verification or rollback failed for one target."""

    code = "VerificationError"


class HealthCheckTimeout(VerificationError):
    """No stable running state within the health check window."""

    code = "HealthCheckTimeout"


class RollbackImpossible(VerificationError):
    """No known-good reference exists to roll back to."""

    code = "RollbackImpossible"


class RollbackFailed(VerificationError):
    """Restoring the known-good reference failed."""

    code = "RollbackFailed"


class RemoteUnreachable(DeployError):
    """Remote host could not be reached."""

    code = "RemoteUnreachable"


MANUAL_ACTION_CODES = frozenset({RollbackImpossible.code, RollbackFailed.code})
