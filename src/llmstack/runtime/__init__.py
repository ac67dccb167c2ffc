"""Runtime - contexts, service location and reconciliation."""

from llmstack.runtime.contexts import ActiveContext, list_contexts
from llmstack.runtime.health import classify_container, classify_status
from llmstack.runtime.locator import ServiceLocator
from llmstack.runtime.reconciler import Reconciler
from llmstack.runtime.service import (
    Context,
    HealthResult,
    HealthStatus,
    PortHolder,
    ReconcilerState,
    ReconciliationOutcome,
    ReconciliationPlan,
    ScanResult,
    ServiceRecord,
    ServiceState,
)

__all__ = [
    "ActiveContext",
    "Context",
    "HealthResult",
    "HealthStatus",
    "PortHolder",
    "Reconciler",
    "ReconcilerState",
    "ReconciliationOutcome",
    "ReconciliationPlan",
    "ScanResult",
    "ServiceLocator",
    "ServiceRecord",
    "ServiceState",
    "classify_container",
    "classify_status",
    "list_contexts",
]
