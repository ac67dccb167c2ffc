"""llmstack - run a local Ollama + Open WebUI stack on Docker.

Finds existing stack containers in every Docker context, resolves conflicts
with them, launches the stack with or without GPU support and reports health.

Quick Start:
    from llmstack import DockerRuntime, Reconciler, ReconciliationPlan, load_config

    config = load_config()
    reconciler = Reconciler(
        DockerRuntime(project_name=config.project_name),
        config,
        choose_plan=lambda scan: ReconciliationPlan.START_FRESH,
    )
    outcome = reconciler.run()
"""

from __future__ import annotations

__version__ = "0.1.0"

from llmstack.config import ServiceSpec, StackConfig, load_config
from llmstack.errors import ErrorCode, LLMStackError
from llmstack.infra import DockerRuntime
from llmstack.runtime import (
    HealthStatus,
    Reconciler,
    ReconcilerState,
    ReconciliationOutcome,
    ReconciliationPlan,
    ScanResult,
    ServiceLocator,
)

__all__ = [
    "__version__",
    "DockerRuntime",
    "ErrorCode",
    "HealthStatus",
    "LLMStackError",
    "Reconciler",
    "ReconcilerState",
    "ReconciliationOutcome",
    "ReconciliationPlan",
    "ScanResult",
    "ServiceLocator",
    "ServiceSpec",
    "StackConfig",
    "load_config",
]
