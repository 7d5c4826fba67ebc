"""Configuration module for the VPS deployer."""

from typing import List, Optional

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings

LOCAL_REMOTE = "local"


class DeployerConfig(BaseSettings):
    """Deployer configuration from environment variables."""

    # Remote host
    remote: str = Field(
        default="deploy@your-vps-ip",
        validation_alias=AliasChoices("VPS_DEPLOY_REMOTE", "REMOTE", "remote"),
        description="SSH target (user@host), or 'local' to run on this host",
    )
    app_dir: str = Field(
        default="/opt/apps",
        validation_alias=AliasChoices("VPS_DEPLOY_APP_DIR", "APP_DIR", "app_dir"),
        description="Remote Docker Compose project directory",
    )
    rollback_dir: Optional[str] = Field(
        default=None,
        description="Remote directory for rollback state (default: <app_dir>/.rollback)",
    )

    # Health check
    health_check_interval: float = Field(
        default=2,
        description="Seconds between container state polls",
    )
    health_check_timeout: float = Field(
        default=30,
        description="Seconds to wait for a stable running state",
    )

    # Remote execution
    connect_timeout: int = Field(
        default=30,
        description="SSH connection timeout in seconds",
    )
    command_timeout: int = Field(
        default=600,
        description="Timeout for a single remote command in seconds",
    )
    query_retries: int = Field(
        default=2,
        description="Retries for read-only remote queries on connection failure",
    )
    ssh_options: List[str] = Field(
        default_factory=list,
        description="Extra arguments passed to ssh",
    )
    compose_command: str = Field(
        default="docker compose",
        description="Docker Compose invocation on the remote host",
    )
    persist_snapshots: bool = Field(
        default=True,
        description="Write rollback snapshots to the remote rollback directory",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    log_format: str = Field(
        default="console",
        description="Log output format (console or json)",
    )

    class Config:
        """Pydantic config."""
        env_prefix = "VPS_DEPLOY_"
        case_sensitive = False
        populate_by_name = True

    @model_validator(mode="after")
    def _check_timings(self) -> "DeployerConfig":
        if self.health_check_interval <= 0:
            raise ValueError("health_check_interval must be positive")
        if self.health_check_timeout < self.health_check_interval:
            raise ValueError(
                "health_check_timeout must be at least health_check_interval"
            )
        if self.query_retries < 0:
            raise ValueError("query_retries must not be negative")
        return self

    @property
    def is_local(self) -> bool:
        """Whether commands run on this host instead of over SSH."""
        return self.remote == LOCAL_REMOTE

    @property
    def resolved_rollback_dir(self) -> str:
        """Remote directory holding snapshot and known-good files.

        Returns:
            Rollback directory path
        """
        return self.rollback_dir or f"{self.app_dir.rstrip('/')}/.rollback"
