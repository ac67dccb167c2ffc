"""Container runtime access."""

from llmstack.infra.base import CommandResult, ContainerInfo, ContainerRuntime, ContextInfo
from llmstack.infra.docker import (
    DockerComposeError,
    DockerError,
    DockerNotFoundError,
    DockerRuntime,
    is_user_in_group,
    parse_host_ports,
)

__all__ = [
    "CommandResult",
    "ContainerInfo",
    "ContainerRuntime",
    "ContextInfo",
    "DockerComposeError",
    "DockerError",
    "DockerNotFoundError",
    "DockerRuntime",
    "is_user_in_group",
    "parse_host_ports",
]
