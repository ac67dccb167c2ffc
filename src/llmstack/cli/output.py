"""Console output and logging setup for the CLI."""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from llmstack.config.settings import StackConfig
from llmstack.errors import LaunchError, LLMStackError
from llmstack.runtime.service import (
    HealthResult,
    HealthStatus,
    ReconcilerState,
    ReconciliationOutcome,
    ScanResult,
    ServiceState,
)

console = Console()

HEALTH_STYLES = {
    HealthStatus.HEALTHY: ("green", "Healthy"),
    HealthStatus.STARTING: ("cyan", "Still starting up"),
    HealthStatus.RUNNING: ("yellow", "Running (no health status)"),
    HealthStatus.UNHEALTHY: ("red", "Running but unhealthy"),
    HealthStatus.NOT_RUNNING: ("red", "Not running"),
}

STATE_STYLES = {
    ServiceState.RUNNING: "green",
    ServiceState.STOPPED: "yellow",
    ServiceState.ABSENT: "dim",
}


def setup_logging(verbose: bool = False) -> None:
    """Route log records through rich on stderr; DEBUG with --verbose, WARNING otherwise."""
    level = logging.DEBUG if verbose else logging.WARNING
    handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_time=False, show_path=False)
    root = logging.getLogger("llmstack")
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False


def print_fatal(error: LLMStackError) -> None:
    """Print a fatal error, its diagnostics and the remediation hint."""
    console.print(f"\n[bold red]{escape(error.message)}[/bold red] [dim]({error.code.value})[/dim]")
    if error.context.stderr:
        console.print(f"[dim]{escape(error.context.stderr.strip())}[/dim]")

    if isinstance(error, LaunchError):
        ps = error.context.extra.get("ps", "")
        logs = error.context.extra.get("logs", "")
        if ps:
            console.print(Panel(escape(ps.rstrip()), title="Container status"))
        if logs:
            console.print(Panel(escape(logs.rstrip()), title="Container logs"))

    if error.remediation:
        console.print(Panel(error.remediation, title="How to fix", border_style="yellow"))


def render_conflicts(scan: ScanResult) -> None:
    console.print("\n[yellow]Existing containers detected that may conflict:[/yellow]")

    others = [r for r in scan.present if r.context.name != scan.current.name]
    if others:
        console.print("\n  [yellow]Containers found in other Docker contexts:[/yellow]")
        for record in others:
            console.print(f"   Context '{record.context.name}' has: {record.name} ({record.state.value})")
        console.print("   These may be using the ports even though they're not visible in the current context.")

    for record in scan.present_in(scan.current):
        if record.state == ServiceState.RUNNING:
            console.print(f"   - {record.name} container: Running ({record.status})")
        else:
            console.print(f"   - {record.name} container: Stopped")

    for holder in scan.port_holders:
        console.print(f"   - Port {holder.port} in use by: {holder.container}")


def render_scan(scan: ScanResult) -> None:
    table = Table(title="Services by Docker context")
    table.add_column("Context")
    table.add_column("Service")
    table.add_column("State")
    table.add_column("Status")
    table.add_column("Ports")

    for (name, context), record in scan.records.items():
        marker = " *" if context.name == scan.current.name else ""
        style = STATE_STYLES[record.state]
        table.add_row(
            f"{context.name}{marker}",
            name,
            f"[{style}]{record.state.value}[/{style}]",
            record.status or "",
            ", ".join(str(p) for p in sorted(record.ports)),
        )
    console.print(table)
    console.print("[dim]* current context[/dim]")

    if scan.port_holders:
        console.print()
        for holder in scan.port_holders:
            console.print(f"[yellow]Port {holder.port} in use by:[/yellow] {holder.container}")

    for error in scan.errors:
        console.print(f"[yellow]{escape(error.message)}[/yellow]")


def render_health(results: list[HealthResult], config: StackConfig) -> None:
    table = Table(show_header=False, box=None)
    table.add_column("Service", width=18)
    table.add_column("Health")
    table.add_column("Status")
    for result in results:
        spec = config.service(result.name)
        label = spec.label if spec else result.name
        color, text = HEALTH_STYLES[result.health]
        table.add_row(label, f"[{color}]{text}[/{color}]", f"[dim]{result.status or ''}[/dim]")
    console.print(table)


def render_outcome(outcome: ReconciliationOutcome, config: StackConfig) -> None:
    """Final summary of a ``start`` run."""
    if outcome.state == ReconcilerState.ABORTED:
        if outcome.plan is None:
            console.print("[red]Invalid choice. Exiting...[/red]")
            return
        names = " ".join(config.service_names)
        console.print("\nExiting. You can manually stop containers with:")
        console.print(f"   docker stop {names}")
        console.print(f"   docker rm {names}")
        console.print("   Then run 'llmstack start' again")
        return

    console.print("\n[bold]Container health[/bold]")
    render_health(outcome.health, config)

    for error in outcome.errors:
        if error.context.extra.get("logs"):
            console.print(Panel(
                escape(error.context.extra["logs"].rstrip()),
                title=f"Recent {error.context.service} logs",
            ))
        console.print(f"[yellow]{escape(error.message)}[/yellow]")
        if error.remediation:
            console.print(f"[dim]{error.remediation}[/dim]")

    if outcome.ready:
        console.print("\n[bold green]All services are healthy and ready![/bold green]")
    else:
        console.print("\n[yellow]Some services may have issues. You can still try accessing the interface.[/yellow]")

    webui = config.service("open-webui")
    url = f"http://localhost:{webui.port}" if webui and webui.port else "the web interface"
    console.print("\n[bold]Next steps:[/bold]")
    console.print(f"   1. Open your browser and go to: {url}")
    console.print("   2. Create an account (first user becomes admin)")
    console.print("   3. Download a model: type /models in chat, click + and add 'llama3.2:3b'")
    console.print("   4. Start chatting!")
    console.print("\n[bold]Troubleshooting:[/bold]")
    console.print("   - If the page doesn't load, wait 2-3 minutes and try again")
    console.print("   - Check logs with: docker compose logs -f")
    console.print("   - Check container status with: llmstack status")
