"""Pytest fixtures for llmstack tests."""

from __future__ import annotations

from typing import Any

import pytest

from llmstack.config import StackConfig
from llmstack.infra import CommandResult, ContainerInfo, ContextInfo, DockerComposeError, DockerError


def make_container(
    name: str,
    state: str = "running",
    status: str | None = None,
    ports: tuple[int, ...] = (),
) -> ContainerInfo:
    if status is None:
        status = "Up 3 minutes" if state == "running" else "Exited (0) 2 hours ago"
    return ContainerInfo(
        id=f"id-{name}",
        name=name,
        image=f"{name}:latest",
        state=state,
        status=status,
        host_ports=set(ports),
    )


class FakeRuntime:
    """In-memory container runtime with several contexts.

    Every call is recorded in ``calls`` as a tuple whose first element is
    the operation and whose second is the context it ran in.
    """

    def __init__(
        self,
        containers: dict[str, list[ContainerInfo]] | None = None,
        current: str = "default",
    ) -> None:
        containers = containers if containers is not None else {"default": []}
        self.containers: dict[str, dict[str, ContainerInfo]] = {
            ctx: {c.name: c for c in items} for ctx, items in containers.items()
        }
        self.current = current
        self.calls: list[tuple[Any, ...]] = []

        self.after_up: dict[str, str] = {
            "ollama": "Up 15 seconds (healthy)",
            "open-webui": "Up 15 seconds (healthy)",
        }
        self.ping_error: Exception | None = None
        self.up_error = False
        self.gpu_ok = False
        self.fail_use: set[str] = set()
        self.fail_restore_to: str | None = None
        self.fail_current_context = False
        self.fail_list_in: set[str] = set()
        self.fail_stop: set[tuple[str, str]] = set()
        self.fail_remove: set[tuple[str, str]] = set()

    # -- helpers ---------------------------------------------------------

    def ops(self, *names: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] in names]

    # -- ContainerRuntime ------------------------------------------------

    def ping(self) -> None:
        self.calls.append(("ping", self.current))
        if self.ping_error is not None:
            raise self.ping_error

    def list_contexts(self) -> list[ContextInfo]:
        return [
            ContextInfo(name=name, current=name == self.current, endpoint=f"unix:///{name}.sock")
            for name in self.containers
        ]

    def current_context(self) -> str:
        if self.fail_current_context:
            raise DockerError("Could not determine the current Docker context", command=["docker", "context", "show"])
        return self.current

    def use_context(self, name: str) -> None:
        self.calls.append(("use", self.current, name))
        if name in self.fail_use or name not in self.containers:
            raise DockerError(
                f"Docker command failed: context use {name}",
                command=["docker", "context", "use", name],
                stderr=f'context "{name}" does not exist',
            )
        if name == self.fail_restore_to and self.current != name:
            raise DockerError("Docker command failed: context use", command=["docker", "context", "use", name])
        self.current = name

    def list_containers(self, name: str | None = None, include_stopped: bool = True) -> list[ContainerInfo]:
        self.calls.append(("ps", self.current, name))
        if self.current in self.fail_list_in:
            raise DockerError("Docker command failed: ps", command=["docker", "ps"], stderr="daemon gone")
        return [
            c
            for c in self.containers[self.current].values()
            if (name is None or c.name == name) and (include_stopped or c.is_running)
        ]

    def stop_container(self, name: str) -> CommandResult:
        self.calls.append(("stop", self.current, name))
        if (self.current, name) in self.fail_stop:
            return CommandResult(ok=False, stderr="cannot stop container")
        container = self.containers[self.current].get(name)
        if container is None:
            return CommandResult(ok=False, stderr=f"No such container: {name}")
        container.state = "exited"
        container.status = "Exited (0) 1 second ago"
        return CommandResult(ok=True, stdout=name)

    def remove_container(self, name: str) -> CommandResult:
        self.calls.append(("rm", self.current, name))
        if (self.current, name) in self.fail_remove:
            return CommandResult(ok=False, stderr="removal already in progress")
        if self.containers[self.current].pop(name, None) is None:
            return CommandResult(ok=False, stderr=f"No such container: {name}")
        return CommandResult(ok=True, stdout=name)

    def container_logs(self, name: str, tail: int) -> str:
        self.calls.append(("logs", self.current, name, tail))
        return f"last {tail} lines of {name}"

    def run_gpu_probe(self, image: str, env: dict[str, str] | None = None) -> bool:
        self.calls.append(("gpu-probe", self.current, image, dict(env or {})))
        return self.gpu_ok

    def compose_up(
        self,
        compose_file: str | None = None,
        profiles: list[str] | None = None,
        force_recreate: bool = False,
    ) -> None:
        self.calls.append(("up", self.current, compose_file, tuple(profiles or ()), force_recreate))
        if self.up_error:
            raise DockerComposeError(
                "Docker compose command failed: up -d",
                command=["docker", "compose", "-f", compose_file or "", "up", "-d"],
                stderr="Bind for 0.0.0.0:3000 failed: port is already allocated",
            )
        for name, status in self.after_up.items():
            state = "running" if status.startswith("Up") else "exited"
            self.containers[self.current][name] = make_container(name, state=state, status=status)

    def compose_down(
        self,
        compose_file: str | None = None,
        profiles: list[str] | None = None,
        remove_volumes: bool = False,
    ) -> None:
        self.calls.append(("down", self.current, compose_file, tuple(profiles or ()), remove_volumes))

    def compose_ps(self, compose_file: str | None = None) -> str:
        return "NAME      STATUS\nollama    Exited (1)"

    def compose_logs(self, compose_file: str | None = None, tail: int | None = None) -> str:
        return f"compose logs (tail {tail})"


@pytest.fixture
def config() -> StackConfig:
    """Default configuration without the settle delay."""
    return StackConfig(settle_seconds=0)


@pytest.fixture
def runtime() -> FakeRuntime:
    """Two empty contexts, 'default' active."""
    return FakeRuntime({"default": [], "desktop-linux": []}, current="default")


@pytest.fixture
def sleeps() -> list[float]:
    return []
