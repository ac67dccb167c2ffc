"""Reconciler - brings the stack from whatever is running to a fresh launch.

Lifecycle::

    Idle -> Scanning -> Clean ----------------------------------> Launching
                     -> Conflict -> UserChoice -> Cleaning   ---> Launching
                                               -> Restarting ---> Launching
                                               -> Aborted
    Launching -> HealthChecking -> Ready | Degraded

Fatal errors (daemon unreachable, context switch failure, launch failure)
propagate to the caller. Cleanup failures and degraded health are collected
on the outcome instead.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable

from llmstack.config.settings import ServiceSpec, StackConfig
from llmstack.errors import (
    ErrorContext,
    HealthDegradedError,
    LaunchError,
    LLMStackError,
    ServiceCleanupError,
)
from llmstack.infra.base import CommandResult, ContainerRuntime
from llmstack.infra.docker import DockerError
from llmstack.runtime.contexts import ActiveContext, list_contexts
from llmstack.runtime.health import classify_container
from llmstack.runtime.locator import ServiceLocator
from llmstack.runtime.service import (
    HealthResult,
    HealthStatus,
    ReconcilerState,
    ReconciliationOutcome,
    ReconciliationPlan,
    ScanResult,
    ServiceState,
)

logger = logging.getLogger(__name__)

PlanChooser = Callable[[ScanResult], ReconciliationPlan | None]
StateObserver = Callable[[ReconcilerState], None]


class Reconciler:
    """Runs the container/context reconciliation workflow.

    Example::

        reconciler = Reconciler(
            DockerRuntime(),
            load_config(),
            choose_plan=lambda scan: ReconciliationPlan.START_FRESH,
        )
        outcome = reconciler.run(profiles=["tts"])
        print(outcome.state, outcome.exit_code)

    Args:
        runtime: Container runtime client.
        config: Stack configuration (services, settle delay, log tails).
        choose_plan: Called with the scan when a conflict is found. Returning
            None means the answer was invalid; the run aborts with exit code 1.
        compose_file: Zero-argument callable returning the compose file to
            launch with, evaluated after cleanup. Defaults to the CPU file.
        sleep: Sleep function used for the settle delay.
        observer: Called on every state transition.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        config: StackConfig,
        choose_plan: PlanChooser,
        compose_file: Callable[[], str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        observer: StateObserver | None = None,
    ) -> None:
        self._runtime = runtime
        self._config = config
        self._choose_plan = choose_plan
        self._compose_file = compose_file or (lambda: config.compose_file)
        self._sleep = sleep
        self._observer = observer
        self._active = ActiveContext(runtime)
        self._locator = ServiceLocator(runtime, self._active)
        self._state = ReconcilerState.IDLE
        self.history: list[ReconcilerState] = [ReconcilerState.IDLE]

    @property
    def state(self) -> ReconcilerState:
        return self._state

    def _enter(self, state: ReconcilerState) -> None:
        logger.debug(f"Reconciler: {self._state.value} -> {state.value}")
        self._state = state
        self.history.append(state)
        if self._observer is not None:
            self._observer(state)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def scan(self, profiles: Iterable[str] | None = None) -> ScanResult:
        """Observe every configured service in every context (read-only).

        Port holders are looked up on the ports of the services that
        ``profiles`` would launch, or on every configured port when
        ``profiles`` is None.
        """
        current, contexts = list_contexts(self._runtime)
        names = self._config.service_names
        records = self._locator.locate(names, contexts)
        services = self._config.services if profiles is None else self._config.active_services(list(profiles))
        ports = [s.port for s in services if s.port]
        holders = self._locator.find_port_holders(ports, exclude=names, context=current)
        return ScanResult(
            current=current,
            contexts=contexts,
            records=records,
            port_holders=holders,
            errors=list(self._locator.unreachable),
        )

    # ------------------------------------------------------------------
    # Workflow
    # ------------------------------------------------------------------

    def run(self, profiles: Iterable[str] = ()) -> ReconciliationOutcome:
        """Scan, resolve conflicts, launch and health-check the stack."""
        profiles = list(profiles)
        outcome = ReconciliationOutcome(state=self._state, profiles=profiles)

        self._enter(ReconcilerState.SCANNING)
        scan = self.scan(profiles)
        outcome.scan = scan
        outcome.errors.extend(scan.errors)

        if not scan.has_conflict:
            self._enter(ReconcilerState.CLEAN)
            force_recreate = False
        else:
            self._enter(ReconcilerState.CONFLICT)
            self._enter(ReconcilerState.USER_CHOICE)
            plan = self._choose_plan(scan)
            outcome.plan = plan

            if plan is None or plan == ReconciliationPlan.ABORT:
                self._enter(ReconcilerState.ABORTED)
                outcome.state = self._state
                outcome.exit_code = 1 if plan is None else 0
                return outcome

            if plan == ReconciliationPlan.START_FRESH:
                self._enter(ReconcilerState.CLEANING)
                outcome.errors.extend(self._clean(scan, remove=True))
            else:
                self._enter(ReconcilerState.RESTARTING)
                outcome.errors.extend(self._clean(scan, remove=False))
            force_recreate = True

        self._enter(ReconcilerState.LAUNCHING)
        compose_file = self._compose_file()
        outcome.compose_file = compose_file
        self._launch(compose_file, profiles, force_recreate)

        self._enter(ReconcilerState.HEALTH_CHECKING)
        if self._config.settle_seconds > 0:
            logger.info(f"Waiting {self._config.settle_seconds:g}s for services to settle")
            self._sleep(self._config.settle_seconds)

        services = self._config.active_services(profiles)
        results = self.check_health(services)
        outcome.health = results

        if all(r.health == HealthStatus.NOT_RUNNING for r in results):
            raise self._launch_error(compose_file, "No service is running after launch")

        degraded = self._degraded(services, results)
        outcome.errors.extend(degraded)
        self._enter(ReconcilerState.DEGRADED if degraded else ReconcilerState.READY)
        outcome.state = self._state
        outcome.exit_code = 0
        return outcome

    # ------------------------------------------------------------------
    # Cleaning / Restarting
    # ------------------------------------------------------------------

    def _best_effort(
        self,
        action: str,
        name: str,
        context_name: str,
        call: Callable[[str], CommandResult],
    ) -> ServiceCleanupError | None:
        try:
            result = call(name)
        except DockerError as e:
            result = CommandResult(ok=False, stderr=e.stderr or str(e))
        if result.ok:
            logger.info(f"{action}: {name} in {context_name}")
            return None
        logger.warning(f"Could not {action} {name} in {context_name}: {result.stderr.strip()}")
        return ServiceCleanupError(
            f"Could not {action} {name} in context '{context_name}'",
            context=ErrorContext(context_name=context_name, service=name, stderr=result.stderr),
        )

    def _clean(self, scan: ScanResult, remove: bool) -> list[LLMStackError]:
        """Stop (and optionally remove) every located service, context by context."""
        errors: list[LLMStackError] = []

        for context in scan.contexts_with_services():
            with self._active.switched_to(context):
                for record in scan.present_in(context):
                    if record.state == ServiceState.RUNNING:
                        err = self._best_effort("stop", record.name, context.name, self._runtime.stop_container)
                        if err:
                            errors.append(err)
                    if remove:
                        err = self._best_effort("remove", record.name, context.name, self._runtime.remove_container)
                        if err:
                            errors.append(err)

        if remove:
            stopped: set[str] = set()
            for holder in scan.port_holders:
                if holder.container in stopped:
                    continue
                stopped.add(holder.container)
                logger.info(f"Stopping container using port {holder.port}: {holder.container}")
                err = self._best_effort("stop", holder.container, holder.context.name, self._runtime.stop_container)
                if err:
                    errors.append(err)
        return errors

    # ------------------------------------------------------------------
    # Launching / HealthChecking
    # ------------------------------------------------------------------

    def _launch(self, compose_file: str, profiles: list[str], force_recreate: bool) -> None:
        try:
            self._runtime.compose_up(compose_file, profiles=profiles, force_recreate=force_recreate)
        except DockerError as e:
            raise self._launch_error(compose_file, str(e), stderr=e.stderr, command=e.command) from e

    def _launch_error(
        self,
        compose_file: str,
        message: str,
        stderr: str = "",
        command: list[str] | None = None,
    ) -> LaunchError:
        """Build a LaunchError carrying ``compose ps`` and a log tail."""
        tail = self._config.diagnostic_tail_lines
        return LaunchError(
            message,
            context=ErrorContext(
                command=command,
                stderr=stderr,
                extra={
                    "compose_file": compose_file,
                    "ps": self._runtime.compose_ps(compose_file),
                    "logs": self._runtime.compose_logs(compose_file, tail=tail),
                },
            ),
        )

    def check_health(self, services: list[ServiceSpec]) -> list[HealthResult]:
        """One poll of each service's status string in the active context."""
        results = []
        for spec in services:
            try:
                containers = self._runtime.list_containers(spec.name, include_stopped=True)
            except DockerError as e:
                logger.warning(f"Could not query {spec.name}: {e}")
                containers = []
            container = containers[0] if containers else None
            health = classify_container(container)
            result = HealthResult(
                name=spec.name,
                health=health,
                status=container.status if container else None,
            )
            if spec.required and not result.is_acceptable:
                result.logs = self._runtime.container_logs(spec.name, self._config.log_tail_lines)
            logger.info(f"{spec.label}: {health.value}")
            results.append(result)
        return results

    def _degraded(self, services: list[ServiceSpec], results: list[HealthResult]) -> list[LLMStackError]:
        required = {s.name for s in services if s.required}
        errors: list[LLMStackError] = []
        for result in results:
            if result.name in required and not result.is_acceptable:
                errors.append(
                    HealthDegradedError(
                        f"{result.name} is {result.health.value}",
                        context=ErrorContext(
                            service=result.name,
                            extra={"status": result.status or "", "logs": result.logs or ""},
                        ),
                    )
                )
        return errors
