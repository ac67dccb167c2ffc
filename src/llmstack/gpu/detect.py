"""GPU detection and compose-file selection."""

from __future__ import annotations

import logging
import platform
import re
import shutil
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass

from llmstack.config.settings import CUDA_IMAGES, DEFAULT_CUDA_IMAGE, StackConfig
from llmstack.infra.base import ContainerRuntime

logger = logging.getLogger(__name__)

CUDA_VERSION_PATTERN = re.compile(r"CUDA Version:\s*([0-9.]+)")


@dataclass
class GpuInfo:
    """What ``nvidia-smi`` reports about the host GPU."""

    name: str | None = None
    driver_version: str | None = None
    cuda_version: str | None = None


@dataclass
class GpuDecision:
    """Which compose file to launch with, and why."""

    use_gpu: bool
    compose_file: str
    reason: str
    image: str | None = None
    needs_toolkit: bool = False


def resolve_cuda_image(
    cuda_version: str | None,
    table: Mapping[str, str] | None = None,
    default: str = DEFAULT_CUDA_IMAGE,
) -> str:
    """Pick the CUDA base image used to probe Docker GPU access.

    Only ``major.minor`` of ``cuda_version`` is considered. Versions missing
    from the table fall back to ``default``.
    """
    table = CUDA_IMAGES if table is None else table
    if not cuda_version:
        return default
    major_minor = ".".join(cuda_version.strip().split(".")[:2])
    return table.get(major_minor, default)


def parse_cuda_version(nvidia_smi_output: str) -> str | None:
    match = CUDA_VERSION_PATTERN.search(nvidia_smi_output or "")
    return match.group(1) if match else None


def _nvidia_smi(*args: str) -> subprocess.CompletedProcess[str] | None:
    if not shutil.which("nvidia-smi"):
        return None
    try:
        return subprocess.run(
            ["nvidia-smi", *args],
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired) as e:
        logger.debug(f"nvidia-smi failed: {e}")
        return None


def nvidia_smi_works() -> bool:
    result = _nvidia_smi()
    return result is not None and result.returncode == 0


def detect_gpu() -> GpuInfo | None:
    """Query ``nvidia-smi``; None when it is missing or fails."""
    summary = _nvidia_smi()
    if summary is None or summary.returncode != 0:
        return None

    info = GpuInfo(cuda_version=parse_cuda_version(summary.stdout))

    query = _nvidia_smi("--query-gpu=name,driver_version", "--format=csv,noheader,nounits")
    if query is not None and query.returncode == 0 and query.stdout.strip():
        first = query.stdout.strip().splitlines()[0]
        parts = [p.strip() for p in first.split(",")]
        if parts:
            info.name = parts[0] or None
        if len(parts) > 1:
            info.driver_version = parts[1] or None
    return info


def select_compose_file(
    runtime: ContainerRuntime,
    config: StackConfig,
    context_name: str,
    system: str | None = None,
    gpu: GpuInfo | None = None,
    detect: bool = True,
) -> GpuDecision:
    """Decide between the GPU and the CPU-only compose file.

    Docker Desktop on Linux cannot pass GPUs through, so the probe is skipped
    there whenever a non-default context is active.
    """
    system = system or platform.system()
    cpu = config.compose_file

    if system == "Linux" and context_name != config.default_context:
        return GpuDecision(
            use_gpu=False,
            compose_file=cpu,
            reason=f"GPU check skipped: context '{context_name}' cannot use the GPU on Linux",
        )

    if gpu is None and detect:
        gpu = detect_gpu()
    if gpu is None:
        return GpuDecision(use_gpu=False, compose_file=cpu, reason="No NVIDIA GPU detected")

    image = resolve_cuda_image(gpu.cuda_version, config.cuda_images, config.default_cuda_image)
    logger.info(f"NVIDIA GPU detected (CUDA {gpu.cuda_version or 'unknown'}), probing with {image}")
    if runtime.run_gpu_probe(image):
        return GpuDecision(
            use_gpu=True,
            compose_file=config.gpu_compose_file,
            reason="GPU is ready",
            image=image,
        )
    return GpuDecision(
        use_gpu=False,
        compose_file=cpu,
        reason="NVIDIA GPU detected but Docker can't access it",
        image=image,
        needs_toolkit=True,
    )
