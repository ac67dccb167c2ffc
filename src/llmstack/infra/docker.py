"""Docker CLI backend for the container runtime.

All listings are requested with ``--format '{{json .}}'`` and parsed into
typed records; nothing above this module looks at raw docker output.
"""

from __future__ import annotations

import getpass
import json as json_module
import logging
import os
import re
import subprocess

from llmstack.errors import ErrorContext, PermissionDeniedError, RuntimeUnavailableError
from llmstack.infra.base import CommandResult, ContainerInfo, ContextInfo

logger = logging.getLogger(__name__)

# "0.0.0.0:11434->11434/tcp, :::11434->11434/tcp", "0.0.0.0:3000-3001->8080-8081/tcp"
PORT_PATTERN = re.compile(r"(?P<ip>[0-9A-Fa-f.:\[\]]*):(?P<port>\d+)(?:-(?P<end>\d+))?->")


class DockerError(Exception):
    """Base exception for Docker operations."""

    def __init__(self, message: str, command: list[str] | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.command = command
        self.stderr = stderr


class DockerNotFoundError(DockerError):
    """Raised when Docker is not installed."""

    pass


class DockerComposeError(DockerError):
    """Raised when a docker compose command fails."""

    pass


def parse_host_ports(ports: str) -> set[int]:
    """Extract published host ports from a ``docker ps`` Ports field."""
    found: set[int] = set()
    for m in PORT_PATTERN.finditer(ports or ""):
        start = int(m.group("port"))
        end = int(m.group("end") or start)
        found.update(range(start, end + 1))
    return found


def parse_json_lines(output: str) -> list[dict]:
    """Parse ``{{json .}}`` output: one object per line, or a single JSON array."""
    text = output.strip()
    if not text:
        return []
    if text.startswith("["):
        try:
            data = json_module.loads(text)
            return [item for item in data if isinstance(item, dict)]
        except json_module.JSONDecodeError:
            logger.debug("Could not parse docker JSON array output")
            return []
    rows = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            rows.append(json_module.loads(line))
        except json_module.JSONDecodeError:
            logger.debug(f"Skipping unparseable docker output line: {line!r}")
    return rows


def is_user_in_group(group: str) -> bool:
    """Check whether the current user belongs to ``group`` (POSIX only)."""
    if os.name != "posix":
        return True
    import grp

    try:
        entry = grp.getgrnam(group)
    except KeyError:
        return False
    if entry.gr_gid in os.getgroups():
        return True
    return getpass.getuser() in entry.gr_mem


class DockerRuntime:
    """Container runtime backed by the ``docker`` and ``docker compose`` CLIs.

    Args:
        project_name: Docker Compose project name.
        docker_bin: Docker executable to call.
    """

    def __init__(self, project_name: str | None = None, docker_bin: str = "docker") -> None:
        self.project_name = project_name
        self.docker_bin = docker_bin
        self._compose_cmd: list[str] | None = None

    # ------------------------------------------------------------------
    # Command plumbing
    # ------------------------------------------------------------------

    def _run(
        self,
        args: list[str],
        check: bool = False,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        cmd = [self.docker_bin, *args]
        logger.debug(f"Running docker command: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise DockerNotFoundError(
                "Docker command not found. Please install Docker.",
                command=cmd,
            ) from e
        except subprocess.TimeoutExpired as e:
            raise DockerError(f"Docker command timed out: {' '.join(args)}", command=cmd) from e

        if check and result.returncode != 0:
            raise DockerError(
                f"Docker command failed: {' '.join(args)}",
                command=cmd,
                stderr=result.stderr,
            )
        return result

    def _detect_compose_command(self) -> list[str]:
        """Detect whether to use 'docker compose' or 'docker-compose'."""
        try:
            result = subprocess.run(
                [self.docker_bin, "compose", "version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
            if result.returncode == 0:
                return [self.docker_bin, "compose"]
        except (FileNotFoundError, subprocess.TimeoutExpired):
            pass

        try:
            result = subprocess.run(
                ["docker-compose", "--version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
            if result.returncode == 0:
                return ["docker-compose"]
        except (FileNotFoundError, subprocess.TimeoutExpired):
            pass

        logger.warning("Docker Compose not found, using 'docker compose' anyway")
        return [self.docker_bin, "compose"]

    @property
    def compose_command(self) -> list[str]:
        if self._compose_cmd is None:
            self._compose_cmd = self._detect_compose_command()
        return self._compose_cmd

    def _build_compose_command(
        self,
        *args: str,
        compose_file: str | None = None,
        profiles: list[str] | None = None,
    ) -> list[str]:
        cmd = self.compose_command.copy()
        if compose_file:
            cmd.extend(["-f", compose_file])
        if self.project_name:
            cmd.extend(["-p", self.project_name])
        for profile in profiles or []:
            cmd.extend(["--profile", profile])
        cmd.extend(args)
        return cmd

    def _run_compose(
        self,
        *args: str,
        compose_file: str | None = None,
        profiles: list[str] | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        cmd = self._build_compose_command(*args, compose_file=compose_file, profiles=profiles)
        logger.debug(f"Running compose command: {' '.join(cmd)}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except FileNotFoundError as e:
            raise DockerComposeError("Docker Compose executable not found", command=cmd) from e

        if check and result.returncode != 0:
            raise DockerComposeError(
                f"Docker compose command failed: {' '.join(args)}",
                command=cmd,
                stderr=result.stderr,
            )
        return result

    # ------------------------------------------------------------------
    # Daemon
    # ------------------------------------------------------------------

    def ping(self) -> None:
        """Check that the daemon answers ``docker info``.

        Raises:
            RuntimeUnavailableError: Docker is missing or the daemon is down.
            PermissionDeniedError: The daemon socket refused the current user.
        """
        try:
            result = self._run(["info"], timeout=10)
        except DockerError as e:
            raise RuntimeUnavailableError(
                str(e),
                context=ErrorContext(command=e.command),
                cause=e,
            ) from e

        if result.returncode == 0:
            return

        stderr = result.stderr or ""
        context = ErrorContext(command=[self.docker_bin, "info"], stderr=stderr)
        if "permission denied" in stderr.lower():
            raise PermissionDeniedError(
                "Permission denied while connecting to the Docker daemon",
                context=context,
            )
        raise RuntimeUnavailableError("Docker is not running", context=context)

    # ------------------------------------------------------------------
    # Contexts
    # ------------------------------------------------------------------

    def list_contexts(self) -> list[ContextInfo]:
        result = self._run(["context", "ls", "--format", "{{json .}}"], check=True)
        contexts = []
        for row in parse_json_lines(result.stdout):
            name = row.get("Name", "")
            if not name:
                continue
            current = row.get("Current", False)
            if isinstance(current, str):
                current = current.lower() == "true"
            contexts.append(
                ContextInfo(
                    name=name,
                    current=bool(current),
                    endpoint=row.get("DockerEndpoint", ""),
                )
            )
        return contexts

    def current_context(self) -> str:
        args = ["context", "show"]
        result = self._run(args)
        name = result.stdout.strip()
        if result.returncode != 0 or not name:
            raise DockerError(
                "Could not determine the current Docker context",
                command=[self.docker_bin, *args],
                stderr=result.stderr,
            )
        return name

    def use_context(self, name: str) -> None:
        self._run(["context", "use", name], check=True)

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    def list_containers(self, name: str | None = None, include_stopped: bool = True) -> list[ContainerInfo]:
        """List containers in the active context.

        Args:
            name: Exact container name to match (None for every container).
            include_stopped: Include stopped containers (``ps -a``).
        """
        args = ["ps", "--no-trunc", "--format", "{{json .}}"]
        if include_stopped:
            args.insert(1, "-a")
        if name:
            args.extend(["--filter", f"name={name}"])

        result = self._run(args, check=True)

        containers = []
        for row in parse_json_lines(result.stdout):
            names = [n.strip().lstrip("/") for n in row.get("Names", "").split(",") if n.strip()]
            if name is not None and name not in names:
                # docker's name filter is a substring match
                continue
            containers.append(
                ContainerInfo(
                    id=row.get("ID", ""),
                    name=name if name is not None else (names[0] if names else ""),
                    image=row.get("Image", ""),
                    state=row.get("State", ""),
                    status=row.get("Status", ""),
                    host_ports=parse_host_ports(row.get("Ports", "")),
                )
            )
        return containers

    def stop_container(self, name: str) -> CommandResult:
        result = self._run(["stop", name])
        return CommandResult(ok=result.returncode == 0, stdout=result.stdout, stderr=result.stderr)

    def remove_container(self, name: str) -> CommandResult:
        result = self._run(["rm", name])
        return CommandResult(ok=result.returncode == 0, stdout=result.stdout, stderr=result.stderr)

    def container_logs(self, name: str, tail: int) -> str:
        result = self._run(["logs", "--tail", str(tail), name])
        if result.returncode != 0:
            return "Could not retrieve logs"
        return result.stdout + result.stderr

    def run_gpu_probe(self, image: str, env: dict[str, str] | None = None) -> bool:
        """Run ``nvidia-smi`` inside ``image`` with every GPU attached."""
        args = ["run", "--rm", "--gpus", "all"]
        for key, value in (env or {}).items():
            args.extend(["-e", f"{key}={value}"])
        args.extend([image, "nvidia-smi"])
        result = self._run(args)
        if result.returncode != 0:
            logger.debug(f"GPU probe failed: {result.stderr.strip()}")
        return result.returncode == 0

    # ------------------------------------------------------------------
    # Compose
    # ------------------------------------------------------------------

    def compose_up(
        self,
        compose_file: str | None = None,
        profiles: list[str] | None = None,
        force_recreate: bool = False,
    ) -> None:
        """Start services detached.

        Raises:
            DockerComposeError: If ``up`` exits non-zero.
        """
        args = ["up", "-d"]
        if force_recreate:
            args.append("--force-recreate")
        logger.info(f"Starting services from {compose_file or 'default compose file'}")
        self._run_compose(*args, compose_file=compose_file, profiles=profiles)

    def compose_down(
        self,
        compose_file: str | None = None,
        profiles: list[str] | None = None,
        remove_volumes: bool = False,
    ) -> None:
        args = ["down"]
        if remove_volumes:
            args.append("-v")
        logger.info("Stopping services")
        self._run_compose(*args, compose_file=compose_file, profiles=profiles)

    def compose_ps(self, compose_file: str | None = None) -> str:
        result = self._run_compose("ps", compose_file=compose_file, check=False)
        return result.stdout + result.stderr

    def compose_logs(self, compose_file: str | None = None, tail: int | None = None) -> str:
        args = ["logs"]
        if tail is not None:
            args.extend(["--tail", str(tail)])
        result = self._run_compose(*args, compose_file=compose_file, check=False)
        return result.stdout + result.stderr
