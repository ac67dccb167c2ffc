"""Numbered interactive prompts.

Every prompt maps its answer onto an enum and has an explicit fallback for
answers it does not recognise.
"""

from __future__ import annotations

from enum import Enum

import click

from llmstack.cli.output import console
from llmstack.runtime.service import ReconciliationPlan


class FeatureChoice(Enum):
    CORE = "1"
    CORE_WITH_TTS = "2"


class ContextChoice(Enum):
    SWITCH = "1"
    KEEP = "2"


POLICY_CHOICES = {
    "1": ReconciliationPlan.START_FRESH,
    "2": ReconciliationPlan.REUSE_EXISTING,
    "3": ReconciliationPlan.ABORT,
}


def _ask(options: list[str], question: str) -> str:
    console.print()
    for number, text in enumerate(options, start=1):
        console.print(f"{number}) {text}")
    console.print()
    return click.prompt(f"{question} (1-{len(options)})", default="", show_default=False).strip()


def prompt_features() -> FeatureChoice:
    """Ask which optional features to enable. Unrecognised answers mean core only."""
    console.print("\nWhich features would you like to start?")
    answer = _ask(
        [
            "Chat only (Ollama + Open WebUI)",
            "Chat + text-to-speech",
        ],
        "Enter your choice",
    )
    try:
        return FeatureChoice(answer)
    except ValueError:
        console.print("Invalid choice. Starting chat only...")
        return FeatureChoice.CORE


def prompt_policy() -> ReconciliationPlan | None:
    """Ask how to handle existing containers. None when the answer is invalid."""
    console.print("\nWhat would you like to do?")
    answer = _ask(
        [
            "Stop and remove existing containers, then start fresh",
            "Try to restart existing containers with current configuration",
            "Exit and let me handle this manually",
        ],
        "Enter your choice",
    )
    return POLICY_CHOICES.get(answer)


def prompt_context_switch(context_name: str, target: str) -> ContextChoice:
    """Offer to leave a GPU-less context. Unrecognised answers keep the current one."""
    console.print(f"\n[yellow]You're using the '{context_name}' Docker context with an NVIDIA GPU.[/yellow]")
    console.print("   Docker Desktop doesn't support GPU acceleration on Linux.")
    console.print(f"\nWould you like to switch to the '{target}' context for GPU support?")
    answer = _ask(
        [
            f"Yes, switch to '{target}' (recommended for GPU)",
            f"No, continue with '{context_name}' (CPU only)",
        ],
        "Enter your choice",
    )
    try:
        return ContextChoice(answer)
    except ValueError:
        console.print("Invalid choice. Continuing with current context...")
        return ContextChoice.KEEP
