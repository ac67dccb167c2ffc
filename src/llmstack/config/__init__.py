"""Configuration for llmstack."""

from llmstack.config.settings import (
    CUDA_IMAGES,
    DEFAULT_CUDA_IMAGE,
    ServiceSpec,
    StackConfig,
    default_services,
    find_config_file,
    load_config,
)

__all__ = [
    "CUDA_IMAGES",
    "DEFAULT_CUDA_IMAGE",
    "ServiceSpec",
    "StackConfig",
    "default_services",
    "find_config_file",
    "load_config",
]
