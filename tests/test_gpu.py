"""Tests for GPU detection, image resolution and the toolkit fix plan."""

from __future__ import annotations

import subprocess
from unittest.mock import patch

import pytest

from llmstack.config import DEFAULT_CUDA_IMAGE, StackConfig
from llmstack.gpu import (
    FixStep,
    GpuInfo,
    build_fix_plan,
    detect_gpu,
    detect_init_system,
    detect_package_manager,
    driver_reinstall_hint,
    gpu_test_command,
    parse_cuda_version,
    resolve_cuda_image,
    run_fix_plan,
    select_compose_file,
)
from tests.conftest import FakeRuntime

NVIDIA_SMI = """
+-----------------------------------------------------------------------------+
| NVIDIA-SMI 535.104.05   Driver Version: 535.104.05   CUDA Version: 12.2     |
+-----------------------------------------------------------------------------+
"""


def which_only(*names: str):
    return lambda cmd: f"/usr/bin/{cmd}" if cmd in names else None


class TestResolveCudaImage:
    """Tests for resolve_cuda_image."""

    @pytest.mark.parametrize(
        "version,tag",
        [
            ("11.4", "11.4.3"),
            ("11.8", "11.8.0"),
            ("12.0", "12.0.1"),
            ("12.1", "12.1.1"),
            ("12.2", "12.2.2"),
        ],
    )
    def test_known_versions(self, version: str, tag: str) -> None:
        assert resolve_cuda_image(version) == f"nvidia/cuda:{tag}-base-ubuntu20.04"

    def test_patch_level_is_ignored(self) -> None:
        assert resolve_cuda_image("12.2.140") == resolve_cuda_image("12.2")

    def test_unknown_version_falls_back_to_default(self) -> None:
        first = resolve_cuda_image("13.7")
        assert first == DEFAULT_CUDA_IMAGE
        assert resolve_cuda_image("13.7") == first

    def test_missing_version(self) -> None:
        assert resolve_cuda_image(None) == DEFAULT_CUDA_IMAGE

    def test_custom_table(self) -> None:
        assert resolve_cuda_image("12.4", {"12.4": "custom:12.4"}, default="x") == "custom:12.4"
        assert resolve_cuda_image("12.5", {"12.4": "custom:12.4"}, default="x") == "x"


class TestDetectGpu:
    """Tests for nvidia-smi parsing."""

    def test_parse_cuda_version(self) -> None:
        assert parse_cuda_version(NVIDIA_SMI) == "12.2"
        assert parse_cuda_version("no gpu here") is None

    @patch("llmstack.gpu.detect.shutil.which", return_value=None)
    def test_no_nvidia_smi(self, mock_which) -> None:
        assert detect_gpu() is None

    @patch("llmstack.gpu.detect.shutil.which", return_value="/usr/bin/nvidia-smi")
    @patch("llmstack.gpu.detect.subprocess.run")
    def test_detects_name_driver_and_cuda(self, mock_run, mock_which) -> None:
        mock_run.side_effect = [
            subprocess.CompletedProcess([], 0, stdout=NVIDIA_SMI, stderr=""),
            subprocess.CompletedProcess([], 0, stdout="NVIDIA GeForce RTX 3060, 535.104.05\n", stderr=""),
        ]

        info = detect_gpu()

        assert info == GpuInfo(name="NVIDIA GeForce RTX 3060", driver_version="535.104.05", cuda_version="12.2")

    @patch("llmstack.gpu.detect.shutil.which", return_value="/usr/bin/nvidia-smi")
    @patch("llmstack.gpu.detect.subprocess.run")
    def test_failing_nvidia_smi(self, mock_run, mock_which) -> None:
        mock_run.return_value = subprocess.CompletedProcess([], 9, stdout="", stderr="driver mismatch")

        assert detect_gpu() is None


class TestSelectComposeFile:
    """Tests for select_compose_file."""

    def test_linux_non_default_context_skips_gpu(self, runtime: FakeRuntime, config: StackConfig) -> None:
        decision = select_compose_file(
            runtime, config, "desktop-linux", system="Linux", gpu=GpuInfo(cuda_version="12.2")
        )

        assert decision.use_gpu is False
        assert decision.compose_file == config.compose_file
        assert runtime.ops("gpu-probe") == []

    def test_no_gpu_uses_cpu(self, runtime: FakeRuntime, config: StackConfig) -> None:
        decision = select_compose_file(runtime, config, "default", system="Linux", detect=False)

        assert decision.compose_file == config.compose_file
        assert decision.needs_toolkit is False

    def test_working_probe_uses_gpu_file(self, runtime: FakeRuntime, config: StackConfig) -> None:
        runtime.gpu_ok = True

        decision = select_compose_file(runtime, config, "default", system="Linux", gpu=GpuInfo(cuda_version="12.1"))

        assert decision.use_gpu is True
        assert decision.compose_file == config.gpu_compose_file
        assert runtime.ops("gpu-probe")[0][2] == "nvidia/cuda:12.1.1-base-ubuntu20.04"

    def test_failing_probe_needs_toolkit(self, runtime: FakeRuntime, config: StackConfig) -> None:
        decision = select_compose_file(runtime, config, "default", system="Linux", gpu=GpuInfo(cuda_version="12.1"))

        assert decision.use_gpu is False
        assert decision.needs_toolkit is True
        assert decision.compose_file == config.compose_file

    def test_other_platforms_probe_in_any_context(self, runtime: FakeRuntime, config: StackConfig) -> None:
        runtime.gpu_ok = True

        decision = select_compose_file(runtime, config, "desktop-windows", system="Windows", gpu=GpuInfo())

        assert decision.use_gpu is True


class TestFixPlan:
    """Tests for the NVIDIA Container Toolkit fix plan."""

    def test_detect_package_manager(self) -> None:
        assert detect_package_manager(which_only("dnf", "yum")).name == "dnf"
        assert detect_package_manager(which_only("yum")).name == "yum"

    def test_unknown_package_manager_defaults_to_apt(self) -> None:
        pm = detect_package_manager(which_only())

        assert pm.name == "apt-get"
        assert pm.supported is False

    def test_detect_init_system(self) -> None:
        assert detect_init_system(which_only("systemctl")).name == "systemd"
        assert detect_init_system(which_only()).restart_docker == "sudo service docker restart"

    def test_apt_systemd_plan(self) -> None:
        steps = build_fix_plan(detect_package_manager(which_only("apt-get")), detect_init_system(which_only("systemctl")))
        commands = [s.command for s in steps]

        assert "sources.list.d" in commands[1]
        assert "sudo apt-get update" in commands
        assert "sudo apt-get install -y nvidia-container-toolkit" in commands
        assert "sudo nvidia-ctk runtime configure --runtime=docker" in commands
        assert commands[-2:] == ["sudo systemctl daemon-reload", "sudo systemctl restart docker"]
        assert not any(s.allow_failure for s in steps)

    def test_dnf_sysv_plan(self) -> None:
        steps = build_fix_plan(detect_package_manager(which_only("dnf")), detect_init_system(which_only()))

        assert "yum.repos.d" in steps[1].command
        update = next(s for s in steps if s.command == "sudo dnf check-update")
        assert update.allow_failure is True
        assert steps[-1].command == "sudo service docker restart"
        assert not any("daemon-reload" in s.command for s in steps)

    def test_hints(self) -> None:
        apt = detect_package_manager(which_only("apt-get"))

        assert gpu_test_command("img") == "docker run --rm --gpus all img nvidia-smi"
        assert driver_reinstall_hint(apt, "535") == "sudo apt-get install -y --reinstall nvidia-driver-535"


class TestRunFixPlan:
    """Tests for run_fix_plan."""

    def test_stops_at_first_failure(self) -> None:
        steps = [FixStep("one", "true"), FixStep("two", "false"), FixStep("three", "true")]
        codes = {"true": 0, "false": 1}

        def run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, codes[cmd], stdout="", stderr="")

        results = run_fix_plan(steps, run=run)

        assert [r.step.description for r in results] == ["one", "two"]
        assert results[-1].ok is False

    def test_allowed_failure_continues(self) -> None:
        steps = [FixStep("update", "check-update", allow_failure=True), FixStep("install", "install")]
        seen: list[str] = []

        def run(cmd, **kwargs):
            return subprocess.CompletedProcess(cmd, 100 if cmd == "check-update" else 0, stdout="", stderr="")

        results = run_fix_plan(steps, run=run, on_step=lambda s: seen.append(s.description))

        assert seen == ["update", "install"]
        assert [r.ok for r in results] == [False, True]
