"""Remote execution: channels and the Compose engine."""

from .channel import CommandResult, LocalChannel, RemoteChannel, SSHChannel
from .compose import ComposeEngine, ComposeError, parse_state

__all__ = [
    "CommandResult",
    "ComposeEngine",
    "ComposeError",
    "LocalChannel",
    "RemoteChannel",
    "SSHChannel",
    "create_channel",
    "create_engine",
    "parse_state",
]


def create_channel(config) -> RemoteChannel:
    """Build the channel described by the deployer configuration."""
    if config.is_local:
        return LocalChannel(command_timeout=config.command_timeout)
    return SSHChannel(
        remote=config.remote,
        connect_timeout=config.connect_timeout,
        command_timeout=config.command_timeout,
        query_retries=config.query_retries,
        ssh_options=config.ssh_options,
    )


def create_engine(config, channel: RemoteChannel = None) -> ComposeEngine:
    """Build a Compose engine for the configured host and project."""
    return ComposeEngine(
        channel=channel or create_channel(config),
        app_dir=config.app_dir,
        rollback_dir=config.resolved_rollback_dir,
        compose_command=config.compose_command,
    )
