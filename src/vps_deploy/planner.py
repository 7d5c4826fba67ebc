"""Deployment planner: validates targets and builds an immutable plan."""

import re
from typing import Iterable

import structlog

from .errors import EmptyPlan, InvalidTarget
from .models import DeploymentPlan, DeployMode

logger = structlog.get_logger()

# Compose service names; also keeps names safe inside remote shell commands.
SERVICE_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")


def build_plan(
    services: Iterable[str],
    mode: DeployMode = DeployMode.PULL,
    verify_health: bool = False,
    dry_run: bool = False,
    rollback_on_failure: bool = True,
) -> DeploymentPlan:
    """Validate requested services and build a deployment plan.

    Services keep the exact order they were given in; callers use it to
    deploy dependencies before dependents.

    Args:
        services: Ordered service names
        mode: Build or pull images
        verify_health: Run health verification after activation
        dry_run: Describe steps without executing them
        rollback_on_failure: Roll back targets that fail verification

    Returns:
        DeploymentPlan

    Raises:
        EmptyPlan: If no services were given
        InvalidTarget: If a name is empty, malformed or duplicated
    """
    names = list(services)
    if not names:
        raise EmptyPlan("No service name provided")

    seen = set()
    for position, name in enumerate(names, start=1):
        if not name or not name.strip():
            raise InvalidTarget(f"Service name at position {position} is empty")
        if not SERVICE_NAME_RE.match(name):
            raise InvalidTarget(f"Invalid service name: {name!r}", target=name)
        if name in seen:
            raise InvalidTarget(f"Duplicate service name: {name}", target=name)
        seen.add(name)

    plan = DeploymentPlan(
        targets=tuple(names),
        mode=mode,
        verify_health=verify_health,
        dry_run=dry_run,
        rollback_on_failure=rollback_on_failure,
    )
    logger.debug("planner.plan_built", targets=list(plan.targets), mode=mode.value)
    return plan
