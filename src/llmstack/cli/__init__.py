"""llmstack CLI - command line interface for the local LLM stack."""

from __future__ import annotations

from llmstack.cli.commands import cli
from llmstack.cli.doctor import HealthCheck, doctor, get_health_checks, run_health_checks


def main() -> None:
    """Main entry point for the llmstack CLI."""
    cli()


__all__ = [
    "main",
    "cli",
    "doctor",
    "HealthCheck",
    "get_health_checks",
    "run_health_checks",
]
