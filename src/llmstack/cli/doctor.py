"""llmstack doctor - host checks for running the local stack."""

from __future__ import annotations

import json as json_module
import platform
import shutil
import subprocess
import sys
from collections.abc import Callable
from pathlib import Path

import click
import httpx
from rich.panel import Panel
from rich.table import Table

from llmstack.cli.output import console
from llmstack.config import StackConfig
from llmstack.errors import LLMStackError, PermissionDeniedError
from llmstack.gpu import nvidia_smi_works
from llmstack.infra import DockerRuntime, is_user_in_group

# ---------------------------------------------------------------------------
# Common fix suggestions
# ---------------------------------------------------------------------------

FIXES = {
    "docker_missing": """
[bold yellow]To install Docker:[/bold yellow]

  https://docs.docker.com/get-docker/
""",
    "docker_not_running": """
[bold yellow]To start the Docker daemon:[/bold yellow]

  sudo systemctl start docker  # Linux
  [cyan]# or open Docker Desktop[/cyan]
""",
    "docker_permission": """
[bold yellow]To use Docker without sudo:[/bold yellow]

  sudo usermod -aG docker $USER
  [dim]# then log out and back in, or run: newgrp docker[/dim]
""",
    "gpu_toolkit": """
[bold yellow]To give Docker access to the NVIDIA GPU:[/bold yellow]

  llmstack fix-gpu
""",
    "compose_file_missing": """
[bold yellow]Run llmstack from the directory holding your compose files,[/bold yellow]
or point to them in llmstack.yaml:

  compose_file: path/to/docker-compose.yml
  gpu_compose_file: path/to/docker-compose.gpu.yml
""",
    "services_down": """
[bold yellow]To start the stack:[/bold yellow]

  llmstack start
""",
}


class HealthCheck:
    """A single health check with name, check function, and required flag."""

    def __init__(
        self,
        name: str,
        check_fn: Callable[[], tuple[bool, str]],
        required: bool = True,
        fix: str | None = None,
    ) -> None:
        """Initialize a health check.

        Args:
            name: Display name for the check.
            check_fn: Function that returns (success, message) tuple.
            required: Whether the stack can start without this check passing.
            fix: Key into FIXES shown with ``--fix`` when the check fails.
        """
        self.name = name
        self.check_fn = check_fn
        self.required = required
        self.fix = fix

    def run(self) -> tuple[bool, str]:
        """Run the health check and return (success, message)."""
        try:
            return self.check_fn()
        except Exception as e:
            return False, str(e)


def check_python_version() -> tuple[bool, str]:
    """Check if Python version meets minimum requirements (>= 3.10)."""
    version = sys.version_info
    if version >= (3, 10):
        return True, f"Python {version.major}.{version.minor}.{version.micro}"
    return False, f"Python {version.major}.{version.minor} (requires >= 3.10)"


def check_docker_installed() -> tuple[bool, str]:
    if not shutil.which("docker"):
        return False, "Docker not found in PATH"
    result = subprocess.run(["docker", "--version"], capture_output=True, text=True, timeout=10)
    if result.returncode != 0:
        return False, "Docker check failed"
    return True, result.stdout.strip()


def check_docker_daemon(runtime: DockerRuntime) -> tuple[bool, str]:
    try:
        runtime.ping()
    except PermissionDeniedError:
        return False, "Permission denied on the Docker socket"
    except LLMStackError as e:
        return False, e.message
    return True, "Daemon is running"


def check_docker_compose(runtime: DockerRuntime) -> tuple[bool, str]:
    """Check if Docker Compose is available (v2 or v1)."""
    cmd = runtime.compose_command
    try:
        result = subprocess.run([*cmd, "version"], capture_output=True, text=True, timeout=10)
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return False, "Docker Compose not found"
    if result.returncode != 0:
        return False, "Docker Compose not found"
    return True, result.stdout.strip().splitlines()[0] if result.stdout.strip() else " ".join(cmd)


def check_docker_context(runtime: DockerRuntime, config: StackConfig) -> tuple[bool, str]:
    current = runtime.current_context()
    if platform.system() == "Linux" and current != config.default_context:
        return False, f"Using '{current}' (GPU passthrough needs '{config.default_context}' on Linux)"
    return True, f"Using '{current}'"


def check_docker_group(config: StackConfig) -> tuple[bool, str]:
    if is_user_in_group(config.docker_group):
        return True, f"User is in '{config.docker_group}'"
    return False, f"User is not in '{config.docker_group}'"


def check_compose_files(config: StackConfig) -> tuple[bool, str]:
    missing = [f for f in (config.compose_file, config.gpu_compose_file) if not Path(f).exists()]
    if missing:
        return False, f"Missing: {', '.join(missing)}"
    return True, f"Found {config.compose_file} and {config.gpu_compose_file}"


def check_nvidia_gpu() -> tuple[bool, str]:
    if not shutil.which("nvidia-smi"):
        return False, "nvidia-smi not found (CPU mode only)"
    if nvidia_smi_works():
        return True, "nvidia-smi works"
    return False, "nvidia-smi failed (driver problem?)"


def check_http(url: str, label: str, timeout: float = 3.0) -> tuple[bool, str]:
    """GET ``url`` and report whether the service answered."""
    try:
        response = httpx.get(url, timeout=timeout)
    except httpx.HTTPError as e:
        return False, f"{label} not reachable ({type(e).__name__})"
    if response.status_code < 400:
        return True, f"{label} responding at {url}"
    return False, f"{label} returned HTTP {response.status_code}"


def get_health_checks(config: StackConfig, runtime: DockerRuntime | None = None) -> list[HealthCheck]:
    """Return the list of health checks to run, ordered by importance."""
    runtime = runtime or DockerRuntime(project_name=config.project_name)

    checks = [
        HealthCheck("Python Version", check_python_version, required=True),
        HealthCheck("Docker", check_docker_installed, required=True, fix="docker_missing"),
        HealthCheck("Docker Daemon", lambda: check_docker_daemon(runtime), required=True, fix="docker_not_running"),
        HealthCheck("Docker Compose", lambda: check_docker_compose(runtime), required=True, fix="docker_missing"),
        HealthCheck("Compose Files", lambda: check_compose_files(config), required=True, fix="compose_file_missing"),
        HealthCheck("Docker Context", lambda: check_docker_context(runtime, config), required=False),
        HealthCheck("Docker Group", lambda: check_docker_group(config), required=False, fix="docker_permission"),
        HealthCheck("NVIDIA GPU", check_nvidia_gpu, required=False, fix="gpu_toolkit"),
    ]

    ollama = config.service("ollama")
    if ollama and ollama.port:
        checks.append(HealthCheck(
            "Ollama API",
            lambda: check_http(f"http://localhost:{ollama.port}/api/tags", "Ollama"),
            required=False,
            fix="services_down",
        ))
    webui = config.service("open-webui")
    if webui and webui.port:
        checks.append(HealthCheck(
            "Open WebUI",
            lambda: check_http(f"http://localhost:{webui.port}/health", "Open WebUI"),
            required=False,
            fix="services_down",
        ))
    return checks


def run_health_checks(checks: list[HealthCheck]) -> list[tuple[HealthCheck, bool, str]]:
    """Run all health checks and display results."""
    console.print("\n[bold blue]llmstack doctor[/bold blue]")
    console.print("=" * 40)

    table = Table(show_header=False, box=None)
    table.add_column("Status", width=3)
    table.add_column("Check", width=16)
    table.add_column("Result")

    results = []
    for check in checks:
        success, message = check.run()
        results.append((check, success, message))
        if success:
            table.add_row("[green]OK[/green]", check.name, f"[green]{message}[/green]")
        elif check.required:
            table.add_row("[red]!![/red]", check.name, f"[red]{message}[/red]")
        else:
            table.add_row("[yellow]--[/yellow]", check.name, f"[yellow]{message}[/yellow]")

    console.print(table)
    console.print()
    return results


@click.command()
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.option("--fix", "show_fixes", is_flag=True, help="Show fix suggestions for failed checks")
@click.pass_obj
def doctor(config: StackConfig, output_json: bool, show_fixes: bool) -> None:
    """Check that this host can run the stack.

    Exit codes:
        0 - All required checks passed
        1 - One or more required checks failed
    """
    checks = get_health_checks(config)

    if output_json:
        results = []
        for check in checks:
            success, message = check.run()
            results.append({
                "name": check.name,
                "required": check.required,
                "success": success,
                "message": message,
            })
        failed_required = sum(1 for r in results if not r["success"] and r["required"])
        output = {
            "checks": results,
            "summary": {
                "passed": sum(1 for r in results if r["success"]),
                "failed_required": failed_required,
                "failed_optional": sum(1 for r in results if not r["success"] and not r["required"]),
                "ready": failed_required == 0,
            },
        }
        click.echo(json_module.dumps(output, indent=2))
        raise SystemExit(0 if failed_required == 0 else 1)

    results = run_health_checks(checks)
    failed = [check for check, success, _ in results if not success]
    failed_required = [c for c in failed if c.required]

    if not failed_required:
        if failed:
            console.print(f"[green]Ready to start[/green] ({len(failed)} optional checks failed)")
        else:
            console.print("[green]All checks passed - Ready to start![/green]")
    else:
        console.print(f"[red]{len(failed_required)} required checks failed[/red]")

    if show_fixes:
        _show_fix_suggestions(failed)
    elif failed_required:
        console.print("\n[dim]Run 'llmstack doctor --fix' for fix suggestions[/dim]")

    raise SystemExit(1 if failed_required else 0)


def _show_fix_suggestions(failed: list[HealthCheck]) -> None:
    shown: set[str] = set()
    for check in failed:
        if check.fix and check.fix not in shown:
            console.print(Panel(FIXES[check.fix], title=check.name))
            shown.add(check.fix)
