"""GPU detection and NVIDIA Container Toolkit support."""

from llmstack.gpu.detect import (
    GpuDecision,
    GpuInfo,
    detect_gpu,
    nvidia_smi_works,
    parse_cuda_version,
    resolve_cuda_image,
    select_compose_file,
)
from llmstack.gpu.fix import (
    FixStep,
    InitSystem,
    PackageManager,
    StepResult,
    build_fix_plan,
    detect_init_system,
    detect_package_manager,
    driver_reinstall_hint,
    gpu_test_command,
    run_fix_plan,
)

__all__ = [
    "FixStep",
    "GpuDecision",
    "GpuInfo",
    "InitSystem",
    "PackageManager",
    "StepResult",
    "build_fix_plan",
    "detect_gpu",
    "detect_init_system",
    "detect_package_manager",
    "driver_reinstall_hint",
    "gpu_test_command",
    "nvidia_smi_works",
    "parse_cuda_version",
    "resolve_cuda_image",
    "run_fix_plan",
    "select_compose_file",
]
