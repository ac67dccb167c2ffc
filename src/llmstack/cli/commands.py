"""llmstack command line interface."""

from __future__ import annotations

import getpass
import json
import logging
import platform
import shutil
import subprocess

import click
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from llmstack import __version__
from llmstack.cli.doctor import doctor
from llmstack.cli.output import (
    console,
    print_fatal,
    render_conflicts,
    render_outcome,
    render_scan,
    setup_logging,
)
from llmstack.cli.prompts import (
    ContextChoice,
    FeatureChoice,
    prompt_context_switch,
    prompt_features,
    prompt_policy,
)
from llmstack.config import StackConfig, load_config
from llmstack.errors import ConfigValidationError, LLMStackError
from llmstack.gpu import (
    build_fix_plan,
    detect_gpu,
    detect_init_system,
    detect_package_manager,
    driver_reinstall_hint,
    gpu_test_command,
    nvidia_smi_works,
    resolve_cuda_image,
    run_fix_plan,
    select_compose_file,
)
from llmstack.infra import DockerError, DockerRuntime, is_user_in_group
from llmstack.runtime import (
    ActiveContext,
    Reconciler,
    ReconcilerState,
    ReconciliationPlan,
    ScanResult,
)

logger = logging.getLogger(__name__)

POLICY_OPTIONS = {
    "fresh": ReconciliationPlan.START_FRESH,
    "reuse": ReconciliationPlan.REUSE_EXISTING,
    "abort": ReconciliationPlan.ABORT,
}


def _load(config_path: str | None) -> StackConfig:
    try:
        return load_config(config_path)
    except ConfigValidationError as e:
        print_fatal(e)
        raise SystemExit(1) from e


@click.group()
@click.version_option(version=__version__, prog_name="llmstack")
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False), help="Path to llmstack.yaml")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """Start, stop and inspect the local Ollama + Open WebUI stack."""
    config = _load(config_path)
    setup_logging(verbose or config.verbose)
    ctx.obj = config


cli.add_command(doctor)


# ---------------------------------------------------------------------------
# start
# ---------------------------------------------------------------------------


def _offer_context_switch(runtime: DockerRuntime, config: StackConfig, switch: bool | None) -> None:
    """On Linux, leave a non-default context when the host has an NVIDIA GPU."""
    if platform.system() != "Linux":
        return

    current = ActiveContext(runtime).name
    if current == config.default_context:
        return

    if not nvidia_smi_works():
        console.print(f"Using '{current}' Docker context (no NVIDIA GPU detected)")
        return

    if switch is None:
        switch = prompt_context_switch(current, config.default_context) == ContextChoice.SWITCH
    if not switch:
        console.print(f"Continuing with '{current}' context (CPU only)")
        return

    ActiveContext(runtime).use(config.default_context)
    console.print(f"[green]Switched to '{config.default_context}' context[/green]")
    if not is_user_in_group(config.docker_group):
        console.print(Panel(
            f"You are not in the '{config.docker_group}' group.\n"
            f"Run: sudo usermod -aG {config.docker_group} $USER\n"
            "Then log out and back in, or run: newgrp docker",
            title="Docker permissions",
            border_style="yellow",
        ))
    # the native daemon may refuse us even when Docker Desktop did not
    runtime.ping()


def _select_profiles(config: StackConfig, with_tts: bool | None) -> list[str]:
    if "tts" not in config.optional_profiles:
        return []
    if with_tts is None:
        with_tts = prompt_features() == FeatureChoice.CORE_WITH_TTS
    return ["tts"] if with_tts else []


def _compose_file_chooser(runtime: DockerRuntime, config: StackConfig):
    def choose() -> str:
        console.print("\nChecking GPU support...")
        decision = select_compose_file(runtime, config, ActiveContext(runtime).name)
        if decision.use_gpu:
            console.print(f"[green]{decision.reason}[/green], starting with GPU acceleration")
        else:
            console.print(f"[yellow]{decision.reason}[/yellow], starting in CPU mode")
        if decision.needs_toolkit:
            console.print("[dim]To enable GPU support run: llmstack fix-gpu[/dim]")
        return decision.compose_file

    return choose


def _plan_chooser(policy: str | None):
    def choose(scan: ScanResult) -> ReconciliationPlan | None:
        render_conflicts(scan)
        if policy is not None:
            return POLICY_OPTIONS[policy]
        return prompt_policy()

    return choose


@cli.command()
@click.option("--with-tts/--no-tts", default=None, help="Also start text-to-speech (prompted when omitted)")
@click.option(
    "--policy",
    type=click.Choice(sorted(POLICY_OPTIONS)),
    help="How to handle existing containers (prompted when omitted)",
)
@click.option(
    "--switch-context/--keep-context",
    default=None,
    help="Switch to the default Docker context for GPU access (Linux)",
)
@click.pass_obj
def start(config: StackConfig, with_tts: bool | None, policy: str | None, switch_context: bool | None) -> None:
    """Reconcile existing containers and launch the stack.

    Exit codes:
        0 - Stack launched (possibly degraded) or user chose to exit
        1 - Fatal error or invalid choice
    """
    console.print("[bold]Starting Local AI...[/bold]")
    runtime = DockerRuntime(project_name=config.project_name)

    try:
        runtime.ping()
        _offer_context_switch(runtime, config, switch_context)
        profiles = _select_profiles(config, with_tts)

        reconciler = Reconciler(
            runtime,
            config,
            choose_plan=_plan_chooser(policy),
            compose_file=_compose_file_chooser(runtime, config),
            observer=_announce,
        )
        outcome = reconciler.run(profiles)
    except LLMStackError as e:
        print_fatal(e)
        raise SystemExit(1) from e

    render_outcome(outcome, config)
    raise SystemExit(outcome.exit_code)


def _announce(state: ReconcilerState) -> None:
    messages = {
        ReconcilerState.SCANNING: "Checking for existing containers...",
        ReconcilerState.CLEANING: "Stopping and removing existing containers...",
        ReconcilerState.RESTARTING: "Restarting existing containers...",
        ReconcilerState.LAUNCHING: "Launching services...",
        ReconcilerState.HEALTH_CHECKING: "Waiting for services to start...",
    }
    if state in messages:
        console.print(messages[state])


# ---------------------------------------------------------------------------
# stop
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--volumes", is_flag=True, help="Also remove volumes (deletes downloaded models and chats)")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def stop(config: StackConfig, volumes: bool, yes: bool) -> None:
    """Stop and remove the stack's containers."""
    if volumes and not yes:
        if not click.confirm("This deletes all downloaded models and chat history. Continue?", default=False):
            console.print("Aborted.")
            raise SystemExit(0)

    runtime = DockerRuntime(project_name=config.project_name)
    console.print("[bold]Stopping Local AI...[/bold]")
    try:
        runtime.ping()
        runtime.compose_down(
            config.compose_file,
            profiles=config.optional_profiles,
            remove_volumes=volumes,
        )
    except DockerError as e:
        console.print(f"[red]Failed to stop services: {e}[/red]")
        if e.stderr:
            console.print(f"[dim]{escape(e.stderr.strip())}[/dim]")
        raise SystemExit(1) from e
    except LLMStackError as e:
        print_fatal(e)
        raise SystemExit(1) from e

    console.print("[green]Local AI stopped successfully![/green]")
    if volumes:
        console.print("Volumes removed. Models will be downloaded again on next start.")
    else:
        console.print("Your models and chat history are preserved in Docker volumes.")
    console.print("To start again, run: llmstack start")


# ---------------------------------------------------------------------------
# status
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--json", "output_json", is_flag=True, help="Output results as JSON")
@click.pass_obj
def status(config: StackConfig, output_json: bool) -> None:
    """Show where each service exists across Docker contexts."""
    runtime = DockerRuntime(project_name=config.project_name)
    reconciler = Reconciler(runtime, config, choose_plan=lambda scan: None)
    try:
        runtime.ping()
        scan = reconciler.scan()
    except LLMStackError as e:
        print_fatal(e)
        raise SystemExit(1) from e

    if output_json:
        output = {
            "current_context": scan.current.name,
            "contexts": [c.name for c in scan.contexts],
            "services": [
                {
                    "name": record.name,
                    "context": record.context.name,
                    "state": record.state.value,
                    "status": record.status,
                    "ports": sorted(record.ports),
                }
                for record in scan.records.values()
            ],
            "port_holders": [
                {"container": h.container, "port": h.port, "context": h.context.name}
                for h in scan.port_holders
            ],
            "unreachable_contexts": [e.context.context_name for e in scan.errors],
        }
        click.echo(json.dumps(output, indent=2))
        return

    render_scan(scan)


# ---------------------------------------------------------------------------
# fix-gpu
# ---------------------------------------------------------------------------


def _print_gpu_hints(image: str, driver_version: str | None) -> None:
    pm = detect_package_manager()
    console.print("\n[yellow]GPU test failed.[/yellow] This might require:")
    console.print("  1. A system reboot (especially after a driver update)")
    console.print("  2. Logging out and back in (for docker group membership)")
    console.print(f"  3. Running the test manually: {gpu_test_command(image)}")
    console.print("\nIf the driver itself is broken, reinstall it:")
    console.print(f"  {driver_reinstall_hint(pm, driver_version)}")


@cli.command("fix-gpu")
@click.option("--yes", "-y", is_flag=True, help="Run the fix commands without asking")
@click.pass_obj
def fix_gpu(config: StackConfig, yes: bool) -> None:
    """Install and configure the NVIDIA Container Toolkit for Docker."""
    console.print("[bold]GPU Docker fix[/bold]")

    if not shutil.which("docker"):
        console.print("[red]Docker is not installed.[/red] Install it from https://docs.docker.com/get-docker/")
        raise SystemExit(1)

    gpu = detect_gpu()
    if gpu is None or not gpu.name or not gpu.driver_version:
        console.print("[red]nvidia-smi failed or no NVIDIA GPU was found.[/red] Install the NVIDIA driver first.")
        raise SystemExit(1)

    pm = detect_package_manager()
    init = detect_init_system()
    image = resolve_cuda_image(gpu.cuda_version, config.cuda_images, config.default_cuda_image)

    info = Table(show_header=False, box=None)
    info.add_column("Key", width=18)
    info.add_column("Value")
    info.add_row("GPU", gpu.name)
    info.add_row("Driver", gpu.driver_version)
    info.add_row("CUDA", gpu.cuda_version or "unknown")
    info.add_row("Test image", image)
    info.add_row("Package manager", pm.name)
    info.add_row("Init system", init.name)
    console.print(info)

    major_minor = ".".join((gpu.cuda_version or "").split(".")[:2])
    if gpu.cuda_version and major_minor not in config.cuda_images:
        console.print(f"[yellow]No test image known for CUDA {gpu.cuda_version}, using {image}[/yellow]")
    if not pm.supported:
        console.print("[yellow]No supported package manager found; the commands below assume apt-get.[/yellow]")

    steps = build_fix_plan(pm, init)
    console.print("\nThe following commands will install the NVIDIA Container Toolkit:")
    for number, step in enumerate(steps, start=1):
        console.print(f"  {number}. {step.description}")
        console.print(f"     [dim]{escape(step.command)}[/dim]", highlight=False)
    console.print(f"\nThen test with: {gpu_test_command(image)}", highlight=False)

    if not yes and not click.confirm("\nWould you like to run these commands automatically?", default=False):
        console.print("Please run the commands above manually, then run 'llmstack start'.")
        raise SystemExit(0)

    results = run_fix_plan(steps, on_step=lambda step: console.print(f"-> {step.description}"))
    last = results[-1] if results else None
    if last is not None and not last.ok and not last.step.allow_failure:
        console.print(f"[red]Failed: {last.step.description}[/red]")
        if last.output:
            console.print(f"[dim]{escape(last.output.strip())}[/dim]")
        raise SystemExit(1)

    runtime = DockerRuntime(project_name=config.project_name)
    try:
        if ActiveContext(runtime).name != config.default_context:
            ActiveContext(runtime).use(config.default_context)
            console.print(f"Switched to '{config.default_context}' Docker context")
    except LLMStackError as e:
        print_fatal(e)
        raise SystemExit(1) from e

    if not is_user_in_group(config.docker_group):
        user = getpass.getuser()
        console.print(f"Adding {user} to the '{config.docker_group}' group...")
        subprocess.run(["sudo", "usermod", "-aG", config.docker_group, user], check=False)
        console.print("[yellow]Log out and back in (or run 'newgrp docker') for this to take effect.[/yellow]")

    console.print("\nTesting GPU access from Docker...")
    if runtime.run_gpu_probe(image, env={"NVIDIA_DISABLE_REQUIRE": "1"}):
        console.print("[bold green]Docker can access the GPU.[/bold green] Run 'llmstack start' to launch with GPU support.")
        return

    _print_gpu_hints(image, gpu.driver_version)
    raise SystemExit(1)

