"""Service Locator - find the stack's containers in every runtime context."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from llmstack.errors import ContextUnreachableError, ErrorContext, RuntimeUnavailableError
from llmstack.infra.base import ContainerInfo, ContainerRuntime
from llmstack.infra.docker import DockerError
from llmstack.runtime.contexts import ActiveContext
from llmstack.runtime.service import Context, PortHolder, ServiceRecord, ServiceState

logger = logging.getLogger(__name__)


def _record_from(name: str, context: Context, containers: list[ContainerInfo]) -> ServiceRecord:
    if not containers:
        return ServiceRecord(name=name, context=context, state=ServiceState.ABSENT)

    # Names are unique per context, so there is at most one match.
    container = containers[0]
    state = ServiceState.RUNNING if container.is_running else ServiceState.STOPPED
    return ServiceRecord(
        name=name,
        context=context,
        state=state,
        status=container.status or None,
        ports=frozenset(container.host_ports),
    )


class ServiceLocator:
    """Determine presence and state of named services across contexts.

    Args:
        runtime: Container runtime to query.
        active: Handle on the active context; created from ``runtime`` if omitted.
    """

    def __init__(self, runtime: ContainerRuntime, active: ActiveContext | None = None) -> None:
        self._runtime = runtime
        self._active = active or ActiveContext(runtime)
        self.unreachable: list[ContextUnreachableError] = []

    def _query(self, name: str, context: Context) -> ServiceRecord:
        try:
            containers = self._runtime.list_containers(name, include_stopped=True)
        except DockerError as e:
            raise RuntimeUnavailableError(
                f"Could not list containers in context '{context.name}'",
                context=ErrorContext(
                    context_name=context.name,
                    service=name,
                    command=e.command,
                    stderr=e.stderr,
                ),
                cause=e,
            ) from e
        return _record_from(name, context, containers)

    def locate(
        self,
        service_names: Iterable[str],
        contexts: Iterable[Context],
    ) -> dict[tuple[str, Context], ServiceRecord]:
        """Observe every service in every context.

        Contexts are visited in the given order; each visit switches the active
        context and the original one is restored before this returns or raises.

        A context other than the current one that cannot be listed (for
        example Docker Desktop stopped while the native daemon runs) is
        scanned as empty and reported in ``unreachable``. The same failure in
        the current context is fatal.

        Returns:
            One ServiceRecord per (service name, context) pair.
        """
        names = list(dict.fromkeys(service_names))
        records: dict[tuple[str, Context], ServiceRecord] = {}
        self.unreachable = []

        for context in contexts:
            with self._active.switched_to(context):
                try:
                    found = [self._query(name, context) for name in names]
                except RuntimeUnavailableError as e:
                    if context.is_current:
                        raise
                    found = [ServiceRecord(name=name, context=context, state=ServiceState.ABSENT) for name in names]
                    self.unreachable.append(self._unreachable(context, e))

            for record in found:
                records[(record.name, context)] = record
                if record.is_present:
                    logger.debug(
                        f"Found {record.name} in context {context.name}: {record.state.value}"
                        f" ({record.status or 'no status'})"
                    )
        return records

    def _unreachable(self, context: Context, error: RuntimeUnavailableError) -> ContextUnreachableError:
        logger.warning(f"Skipping Docker context '{context.name}': {error.context.stderr.strip() or error.message}")
        return ContextUnreachableError(
            f"Docker context '{context.name}' is not reachable; its services were not checked",
            context=ErrorContext(
                context_name=context.name,
                command=error.context.command,
                stderr=error.context.stderr,
            ),
            cause=error,
        )

    def find_port_holders(
        self,
        ports: Iterable[int],
        exclude: Iterable[str],
        context: Context,
    ) -> list[PortHolder]:
        """Running containers in the active context that publish one of ``ports``.

        Containers named in ``exclude`` (the stack's own services) are skipped.
        """
        wanted = set(ports)
        skip = set(exclude)
        if not wanted:
            return []

        try:
            running = self._runtime.list_containers(None, include_stopped=False)
        except DockerError as e:
            raise RuntimeUnavailableError(
                "Could not list running containers",
                context=ErrorContext(context_name=context.name, command=e.command, stderr=e.stderr),
                cause=e,
            ) from e

        holders = []
        for container in running:
            if container.name in skip:
                continue
            for port in sorted(container.host_ports & wanted):
                holders.append(PortHolder(container=container.name, port=port, context=context))
        return holders
