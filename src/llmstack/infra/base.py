"""Protocol for the container runtime client."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class ContextInfo:
    """A runtime context as reported by the runtime."""

    name: str
    current: bool = False
    endpoint: str = ""


@dataclass
class ContainerInfo:
    """A container as reported by the runtime's structured listing."""

    id: str
    name: str
    image: str = ""
    state: str = ""
    status: str = ""
    host_ports: set[int] = field(default_factory=set)

    @property
    def is_running(self) -> bool:
        return self.state.lower() == "running"


@dataclass
class CommandResult:
    """Outcome of a runtime call that is allowed to fail."""

    ok: bool
    stdout: str = ""
    stderr: str = ""


class ContainerRuntime(Protocol):
    """Everything the reconciliation workflow needs from a container runtime.

    ``DockerRuntime`` implements it against the docker CLI; tests use an
    in-memory fake.
    """

    def ping(self) -> None:
        """Raise RuntimeUnavailableError / PermissionDeniedError if unusable."""
        ...

    def list_contexts(self) -> list[ContextInfo]:
        ...

    def current_context(self) -> str:
        ...

    def use_context(self, name: str) -> None:
        ...

    def list_containers(self, name: str | None = None, include_stopped: bool = True) -> list[ContainerInfo]:
        """List containers; ``name`` matches exactly."""
        ...

    def stop_container(self, name: str) -> CommandResult:
        ...

    def remove_container(self, name: str) -> CommandResult:
        ...

    def container_logs(self, name: str, tail: int) -> str:
        ...

    def run_gpu_probe(self, image: str, env: dict[str, str] | None = None) -> bool:
        ...

    def compose_up(
        self,
        compose_file: str | None = None,
        profiles: list[str] | None = None,
        force_recreate: bool = False,
    ) -> None:
        ...

    def compose_down(
        self,
        compose_file: str | None = None,
        profiles: list[str] | None = None,
        remove_volumes: bool = False,
    ) -> None:
        ...

    def compose_ps(self, compose_file: str | None = None) -> str:
        ...

    def compose_logs(self, compose_file: str | None = None, tail: int | None = None) -> str:
        ...
