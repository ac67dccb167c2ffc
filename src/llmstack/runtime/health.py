"""Health classification of runtime status strings."""

from __future__ import annotations

from llmstack.infra.base import ContainerInfo
from llmstack.runtime.service import HealthStatus


def classify_status(status: str | None, running: bool = True) -> HealthStatus:
    """Map a runtime status string to a HealthStatus.

    "unhealthy" is tested before "healthy" since one contains the other.

    Examples:
        >>> classify_status("Up 2 minutes (healthy)")
        <HealthStatus.HEALTHY: 'healthy'>
        >>> classify_status("Up 5 seconds (health: starting)")
        <HealthStatus.STARTING: 'starting'>
        >>> classify_status("Up 1 minute")
        <HealthStatus.RUNNING: 'running'>
    """
    if not running or not status:
        return HealthStatus.NOT_RUNNING
    lowered = status.lower()
    if "unhealthy" in lowered:
        return HealthStatus.UNHEALTHY
    if "healthy" in lowered:
        return HealthStatus.HEALTHY
    if "starting" in lowered:
        return HealthStatus.STARTING
    return HealthStatus.RUNNING


def classify_container(container: ContainerInfo | None) -> HealthStatus:
    if container is None:
        return HealthStatus.NOT_RUNNING
    return classify_status(container.status, running=container.is_running)
