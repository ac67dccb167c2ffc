"""Tests for configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from llmstack.config import ServiceSpec, StackConfig, find_config_file, load_config
from llmstack.errors import ConfigValidationError, ErrorCode


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in (
        "LLMSTACK_COMPOSE_FILE",
        "LLMSTACK_GPU_COMPOSE_FILE",
        "LLMSTACK_PROJECT_NAME",
        "LLMSTACK_SETTLE_SECONDS",
        "LLMSTACK_VERBOSE",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


class TestStackConfig:
    """Tests for StackConfig defaults and helpers."""

    def test_defaults(self) -> None:
        config = StackConfig()

        assert config.compose_file == "docker-compose.yml"
        assert config.gpu_compose_file == "docker-compose.gpu.yml"
        assert config.settle_seconds == 15.0
        assert config.log_tail_lines == 10
        assert config.diagnostic_tail_lines == 20
        assert config.service_names == ["ollama", "open-webui", "tts"]

    def test_active_services(self) -> None:
        config = StackConfig()

        assert [s.name for s in config.active_services()] == ["ollama", "open-webui"]
        assert [s.name for s in config.active_services(["tts"])] == ["ollama", "open-webui", "tts"]
        assert config.optional_profiles == ["tts"]

    def test_service_lookup(self) -> None:
        config = StackConfig()

        assert config.service("ollama").port == 11434
        assert config.service("missing") is None

    def test_negative_settle_rejected(self) -> None:
        with pytest.raises(ConfigValidationError) as exc_info:
            StackConfig(settle_seconds=-1)

        assert exc_info.value.field == "settle_seconds"
        assert exc_info.value.code == ErrorCode.CONFIG_INVALID

    def test_duplicate_services_rejected(self) -> None:
        services = [ServiceSpec(name="ollama", label="A"), ServiceSpec(name="ollama", label="B")]

        with pytest.raises(ConfigValidationError, match="Duplicate"):
            StackConfig(services=services)

    def test_at_least_one_required_service(self) -> None:
        services = [ServiceSpec(name="tts", label="TTS", required=False, profile="tts")]

        with pytest.raises(ConfigValidationError, match="required"):
            StackConfig(services=services)


class TestLoadConfig:
    """Tests for load_config."""

    def test_no_file_gives_defaults(self) -> None:
        assert find_config_file() is None
        assert load_config().compose_file == "docker-compose.yml"

    def test_yaml_file_is_found(self, tmp_path: Path) -> None:
        (tmp_path / "llmstack.yaml").write_text(
            "compose_file: stack.yml\n"
            "settle_seconds: 5\n"
            "services:\n"
            "  - {name: ollama, label: Ollama, port: 11435}\n"
            "  - {name: open-webui, label: WebUI, port: 8080}\n"
        )

        config = load_config()

        assert config.compose_file == "stack.yml"
        assert config.settle_seconds == 5
        assert config.service("ollama").port == 11435
        assert config.service("tts") is None

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "custom.yaml"
        path.write_text("settle_seconds: 5\nproject_name: fromfile\n")
        monkeypatch.setenv("LLMSTACK_SETTLE_SECONDS", "2.5")
        monkeypatch.setenv("LLMSTACK_VERBOSE", "yes")

        config = load_config(path)

        assert config.settle_seconds == 2.5
        assert config.verbose is True
        assert config.project_name == "fromfile"

    def test_non_mapping_yaml_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "llmstack.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigValidationError, match="mapping"):
            load_config(path)

    def test_unparseable_env_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LLMSTACK_SETTLE_SECONDS", "soon")

        with pytest.raises(ConfigValidationError) as exc_info:
            load_config()

        assert exc_info.value.field == "settle_seconds"
        assert "LLMSTACK_SETTLE_SECONDS" in exc_info.value.message

    def test_wrong_type_in_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "llmstack.yaml"
        path.write_text("log_tail_lines: lots\n")

        with pytest.raises(ConfigValidationError) as exc_info:
            load_config(path)

        assert exc_info.value.field == "log_tail_lines"
        assert exc_info.value.code == ErrorCode.CONFIG_INVALID

    def test_malformed_service_entry(self, tmp_path: Path) -> None:
        path = tmp_path / "llmstack.yaml"
        path.write_text("services:\n  - {name: ollama}\n")

        with pytest.raises(ConfigValidationError) as exc_info:
            load_config(path)

        assert exc_info.value.field == "services.0.label"

    def test_invalid_yaml_syntax(self, tmp_path: Path) -> None:
        path = tmp_path / "llmstack.yaml"
        path.write_text("compose_file: [unclosed\n")

        with pytest.raises(ConfigValidationError, match="parse YAML"):
            load_config(path)
