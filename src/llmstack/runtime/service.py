"""Service - records describing the stack's services and the workflow's outcome."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from llmstack.errors import LLMStackError


@dataclass(frozen=True)
class Context:
    """A runtime context, observed fresh on every invocation.

    Attributes:
        name: Context name as the runtime reports it.
        is_current: Whether it was the active context when enumerated.
    """

    name: str
    is_current: bool = False


class ServiceState(Enum):
    """Lifecycle state of a service in one context."""

    ABSENT = "absent"
    STOPPED = "stopped"
    RUNNING = "running"


@dataclass(frozen=True)
class ServiceRecord:
    """Observation of one service in one context.

    Attributes:
        name: Service (container) name.
        context: Context the observation was made in.
        state: absent, stopped or running.
        status: Runtime status string, e.g. "Up 3 minutes (healthy)".
        ports: Host ports the container publishes.
    """

    name: str
    context: Context
    state: ServiceState
    status: str | None = None
    ports: frozenset[int] = frozenset()

    @property
    def is_present(self) -> bool:
        return self.state != ServiceState.ABSENT


@dataclass(frozen=True)
class PortHolder:
    """A non-stack container publishing one of the stack's host ports."""

    container: str
    port: int
    context: Context


class ReconciliationPlan(Enum):
    """How to deal with services left over from an earlier run.

    Values:
        START_FRESH: Stop and remove every located service, then launch.
        REUSE_EXISTING: Stop located services, then launch with force-recreate.
        ABORT: Change nothing and exit.
    """

    START_FRESH = "fresh"
    REUSE_EXISTING = "reuse"
    ABORT = "abort"


class HealthStatus(Enum):
    """Health of a service after launch.

    Values:
        HEALTHY: The container's health check passes.
        STARTING: The health check has not settled yet.
        RUNNING: Up, with no health check defined.
        UNHEALTHY: The health check fails.
        NOT_RUNNING: No running container.
    """

    HEALTHY = "healthy"
    STARTING = "starting"
    RUNNING = "running"
    UNHEALTHY = "unhealthy"
    NOT_RUNNING = "not-running"

    @property
    def is_acceptable(self) -> bool:
        return self in (HealthStatus.HEALTHY, HealthStatus.STARTING, HealthStatus.RUNNING)


@dataclass
class HealthResult:
    """Health of one service, with a log tail when it is not acceptable."""

    name: str
    health: HealthStatus
    status: str | None = None
    logs: str | None = None

    @property
    def is_acceptable(self) -> bool:
        return self.health.is_acceptable


class ReconcilerState(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CLEAN = "clean"
    CONFLICT = "conflict"
    USER_CHOICE = "user-choice"
    CLEANING = "cleaning"
    RESTARTING = "restarting"
    ABORTED = "aborted"
    LAUNCHING = "launching"
    HEALTH_CHECKING = "health-checking"
    READY = "ready"
    DEGRADED = "degraded"


@dataclass
class ScanResult:
    """Everything the Scanning stage observed."""

    current: Context
    contexts: list[Context]
    records: dict[tuple[str, Context], ServiceRecord]
    port_holders: list[PortHolder] = field(default_factory=list)
    errors: list[LLMStackError] = field(default_factory=list)

    @property
    def present(self) -> list[ServiceRecord]:
        return [r for r in self.records.values() if r.is_present]

    @property
    def has_conflict(self) -> bool:
        return bool(self.present or self.port_holders)

    def contexts_with_services(self) -> list[Context]:
        """Contexts holding at least one present record, in enumeration order."""
        found = {r.context.name for r in self.present}
        return [c for c in self.contexts if c.name in found]

    def present_in(self, context: Context) -> list[ServiceRecord]:
        return [r for r in self.present if r.context.name == context.name]


@dataclass
class ReconciliationOutcome:
    """Result of one run of the reconciliation workflow."""

    state: ReconcilerState
    plan: ReconciliationPlan | None = None
    scan: ScanResult | None = None
    health: list[HealthResult] = field(default_factory=list)
    errors: list[LLMStackError] = field(default_factory=list)
    compose_file: str | None = None
    profiles: list[str] = field(default_factory=list)
    exit_code: int = 0

    @property
    def ready(self) -> bool:
        return self.state == ReconcilerState.READY

    @property
    def degraded(self) -> bool:
        return self.state == ReconcilerState.DEGRADED


__all__ = [
    "Context",
    "HealthResult",
    "HealthStatus",
    "PortHolder",
    "ReconciliationOutcome",
    "ReconciliationPlan",
    "ReconcilerState",
    "ScanResult",
    "ServiceRecord",
    "ServiceState",
]
