"""Configuration settings and loading."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from llmstack.errors import ConfigValidationError, ErrorContext

DEFAULT_CONFIG_FILES = ("llmstack.yaml", "llmstack.yml", ".llmstack.yaml")

DEFAULT_CUDA_IMAGE = "nvidia/cuda:11.4.3-base-ubuntu20.04"

CUDA_IMAGES: dict[str, str] = {
    "11.4": "nvidia/cuda:11.4.3-base-ubuntu20.04",
    "11.8": "nvidia/cuda:11.8.0-base-ubuntu20.04",
    "12.0": "nvidia/cuda:12.0.1-base-ubuntu20.04",
    "12.1": "nvidia/cuda:12.1.1-base-ubuntu20.04",
    "12.2": "nvidia/cuda:12.2.2-base-ubuntu20.04",
}


class ServiceSpec(BaseModel):
    """One containerized component of the stack.

    Attributes:
        name: Container name; matched exactly against the runtime.
        label: Human-readable name for output.
        port: Host port the service is expected to publish.
        required: Whether the service counts toward the health verdict.
        profile: Compose profile that enables it (None for core services).
    """

    name: str
    label: str
    port: int | None = None
    required: bool = True
    profile: str | None = None


def default_services() -> list[ServiceSpec]:
    return [
        ServiceSpec(name="ollama", label="Ollama", port=11434),
        ServiceSpec(name="open-webui", label="Open WebUI", port=3000),
        ServiceSpec(name="tts", label="Text-to-speech", port=8000, required=False, profile="tts"),
    ]


class StackConfig(BaseSettings):
    """Configuration for llmstack."""

    model_config = SettingsConfigDict(
        env_prefix="LLMSTACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    compose_file: str = "docker-compose.yml"
    gpu_compose_file: str = "docker-compose.gpu.yml"
    project_name: str | None = None
    services: list[ServiceSpec] = Field(default_factory=default_services)
    settle_seconds: float = 15.0
    log_tail_lines: int = 10
    diagnostic_tail_lines: int = 20
    default_context: str = "default"
    docker_group: str = "docker"
    cuda_images: dict[str, str] = Field(default_factory=lambda: dict(CUDA_IMAGES))
    default_cuda_image: str = DEFAULT_CUDA_IMAGE
    verbose: bool = False

    @field_validator("settle_seconds", "log_tail_lines", "diagnostic_tail_lines")
    @classmethod
    def validate_non_negative(cls, v: float, info: ValidationInfo) -> float:
        if v < 0:
            raise ConfigValidationError(
                message=f"{info.field_name} must not be negative",
                field=info.field_name,
                value=v,
            )
        return v

    @field_validator("services")
    @classmethod
    def validate_services(cls, v: list[ServiceSpec]) -> list[ServiceSpec]:
        names = [s.name for s in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigValidationError(
                message=f"Duplicate service names: {', '.join(duplicates)}",
                field="services",
                value=names,
            )
        if not any(s.required for s in v):
            raise ConfigValidationError(
                message="At least one service must be marked required",
                field="services",
                value=names,
                context=ErrorContext(extra={"hint": "set required: true on the backend service"}),
            )
        return v

    def service(self, name: str) -> ServiceSpec | None:
        for spec in self.services:
            if spec.name == name:
                return spec
        return None

    def active_services(self, profiles: list[str] | tuple[str, ...] = ()) -> list[ServiceSpec]:
        """Core services plus those enabled by the given profiles."""
        return [s for s in self.services if s.profile is None or s.profile in profiles]

    @property
    def service_names(self) -> list[str]:
        return [s.name for s in self.services]

    @property
    def optional_profiles(self) -> list[str]:
        seen: list[str] = []
        for spec in self.services:
            if spec.profile and spec.profile not in seen:
                seen.append(spec.profile)
        return seen


def find_config_file(search_dir: str | Path | None = None) -> Path | None:
    """Return the first default config file present in ``search_dir``."""
    base = Path(search_dir) if search_dir else Path.cwd()
    for name in DEFAULT_CONFIG_FILES:
        candidate = base / name
        if candidate.exists():
            return candidate
    return None


def load_config(config_path: str | Path | None = None) -> StackConfig:
    """Load configuration from file and environment.

    Priority: env vars > config file > defaults

    Raises:
        ConfigValidationError: The file is not valid YAML, a value has the
            wrong type, or a field fails validation.
    """
    config_data: dict[str, Any] = {}

    if config_path is None:
        config_path = find_config_file()

    if config_path is not None:
        config_path = Path(config_path)
        if config_path.exists():
            try:
                with open(config_path) as f:
                    loaded = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigValidationError(
                    message=f"Failed to parse YAML configuration: {e}",
                    context=ErrorContext(extra={"path": str(config_path)}),
                ) from e
            if not isinstance(loaded, dict):
                raise ConfigValidationError(
                    message=f"Configuration must be a YAML mapping, got {type(loaded).__name__}",
                    context=ErrorContext(extra={"path": str(config_path)}),
                )
            config_data = loaded

    config_data.update(_get_env_overrides())

    try:
        return StackConfig(**config_data)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        raise ConfigValidationError(
            message=f"Invalid configuration value for {field or 'config'}: {first['msg']}",
            field=field,
            value=first.get("input"),
        ) from e


def _get_env_overrides() -> dict[str, Any]:
    """Get configuration overrides from environment variables."""
    overrides: dict[str, Any] = {}

    env_mappings = {
        "LLMSTACK_COMPOSE_FILE": "compose_file",
        "LLMSTACK_GPU_COMPOSE_FILE": "gpu_compose_file",
        "LLMSTACK_PROJECT_NAME": "project_name",
        "LLMSTACK_SETTLE_SECONDS": ("settle_seconds", float),
        "LLMSTACK_VERBOSE": ("verbose", lambda x: x.lower() in ("true", "1", "yes")),
    }

    for env_key, config_key in env_mappings.items():
        value = os.environ.get(env_key)
        if value is not None:
            if isinstance(config_key, tuple):
                key, converter = config_key
                try:
                    overrides[key] = converter(value)
                except ValueError as e:
                    raise ConfigValidationError(
                        message=f"{env_key} has an invalid value: {value!r}",
                        field=key,
                        value=value,
                    ) from e
            else:
                overrides[config_key] = value

    return overrides
