"""Selective Docker Compose deployments to a VPS over SSH."""

from .errors import DeployError
from .models import DeploymentPlan, DeploymentReport, DeployMode, Outcome
from .orchestrator import Deployer
from .planner import build_plan

__version__ = "1.0.0"

__all__ = [
    "DeployError",
    "DeployMode",
    "Deployer",
    "DeploymentPlan",
    "DeploymentReport",
    "Outcome",
    "build_plan",
]
