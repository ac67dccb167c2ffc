"""NVIDIA Container Toolkit installation plan.

The plan is built as data first so it can be printed for manual use and
executed step by step when the user agrees.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

KEYRING = "/usr/share/keyrings/nvidia-container-toolkit-keyring.gpg"
TOOLKIT_BASE_URL = "https://nvidia.github.io/libnvidia-container"


@dataclass(frozen=True)
class PackageManager:
    name: str
    update: str
    install: str
    supported: bool = True

    @property
    def is_apt(self) -> bool:
        return self.name == "apt-get"

    @property
    def update_may_fail(self) -> bool:
        # dnf/yum check-update exits 100 when updates are available
        return self.name in ("dnf", "yum")


@dataclass(frozen=True)
class InitSystem:
    name: str
    restart_docker: str
    reload_daemon: str | None = None


@dataclass(frozen=True)
class FixStep:
    """One shell command of the fix plan."""

    description: str
    command: str
    allow_failure: bool = False


@dataclass
class StepResult:
    step: FixStep
    ok: bool
    output: str = ""


PACKAGE_MANAGERS = (
    PackageManager("apt-get", "apt-get update", "apt-get install -y"),
    PackageManager("dnf", "dnf check-update", "dnf install -y"),
    PackageManager("yum", "yum check-update", "yum install -y"),
)


def detect_package_manager(which: Callable[[str], str | None] = shutil.which) -> PackageManager:
    """First of apt-get, dnf, yum that exists; apt-get (flagged unsupported) otherwise."""
    for manager in PACKAGE_MANAGERS:
        if which(manager.name):
            return manager
    fallback = PACKAGE_MANAGERS[0]
    return PackageManager(fallback.name, fallback.update, fallback.install, supported=False)


def detect_init_system(which: Callable[[str], str | None] = shutil.which) -> InitSystem:
    if which("systemctl"):
        return InitSystem(
            name="systemd",
            restart_docker="sudo systemctl restart docker",
            reload_daemon="sudo systemctl daemon-reload",
        )
    return InitSystem(name="sysv", restart_docker="sudo service docker restart")


def build_fix_plan(pm: PackageManager, init: InitSystem) -> list[FixStep]:
    """Commands that install and wire up the NVIDIA Container Toolkit."""
    steps = [
        FixStep(
            "Add the NVIDIA Container Toolkit signing key",
            f"curl -fsSL {TOOLKIT_BASE_URL}/gpgkey | sudo gpg --dearmor --yes -o {KEYRING}",
        ),
    ]

    if pm.is_apt:
        steps.append(
            FixStep(
                "Add the NVIDIA Container Toolkit apt repository",
                f"curl -s -L {TOOLKIT_BASE_URL}/stable/deb/nvidia-container-toolkit.list | "
                f"sed 's#deb https://#deb [signed-by={KEYRING}] https://#g' | "
                "sudo tee /etc/apt/sources.list.d/nvidia-container-toolkit.list",
            )
        )
    else:
        steps.append(
            FixStep(
                "Add the NVIDIA Container Toolkit rpm repository",
                f"curl -s -L {TOOLKIT_BASE_URL}/stable/rpm/nvidia-container-toolkit.repo | "
                "sudo tee /etc/yum.repos.d/nvidia-container-toolkit.repo",
            )
        )

    steps.extend([
        FixStep("Update the package index", f"sudo {pm.update}", allow_failure=pm.update_may_fail),
        FixStep("Install nvidia-container-toolkit", f"sudo {pm.install} nvidia-container-toolkit"),
        FixStep(
            "Configure Docker to use the NVIDIA runtime",
            "sudo nvidia-ctk runtime configure --runtime=docker",
        ),
    ])

    if init.reload_daemon:
        steps.append(FixStep("Reload systemd units", init.reload_daemon))
    steps.append(FixStep("Restart Docker", init.restart_docker))
    return steps


def gpu_test_command(image: str) -> str:
    return f"docker run --rm --gpus all {image} nvidia-smi"


def driver_reinstall_hint(pm: PackageManager, driver_version: str | None) -> str:
    driver = driver_version or "<version>"
    if pm.is_apt:
        return f"sudo {pm.install} --reinstall nvidia-driver-{driver}"
    return f"sudo {pm.install} nvidia-driver-{driver}"


def run_fix_plan(
    steps: list[FixStep],
    run: Callable[..., subprocess.CompletedProcess[str]] = subprocess.run,
    on_step: Callable[[FixStep], None] | None = None,
) -> list[StepResult]:
    """Run each step in order, stopping at the first failure not allowed to fail."""
    results: list[StepResult] = []
    for step in steps:
        if on_step is not None:
            on_step(step)
        logger.info(f"Running: {step.command}")
        completed = run(step.command, shell=True, capture_output=True, text=True)
        ok = completed.returncode == 0
        results.append(StepResult(step=step, ok=ok, output=(completed.stdout or "") + (completed.stderr or "")))
        if not ok:
            if step.allow_failure:
                logger.debug(f"Ignoring failure of '{step.description}' (exit {completed.returncode})")
                continue
            logger.warning(f"Step failed: {step.description} (exit {completed.returncode})")
            break
    return results
