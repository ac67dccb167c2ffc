"""Exception hierarchy for llmstack.

Every error carries an ErrorCode, an ErrorContext describing where it
happened, a remediation hint for the user and a ``fatal`` flag. Fatal errors
abort the whole workflow; non-fatal ones are collected by the Reconciler and
shown in the final summary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCode(Enum):
    """Stable identifiers for every failure the workflow knows about."""

    RUNTIME_UNAVAILABLE = "E100"
    PERMISSION_DENIED = "E101"
    CONTEXT_SWITCH_FAILED = "E200"
    SERVICE_CLEANUP_FAILED = "E300"
    LAUNCH_FAILED = "E400"
    HEALTH_DEGRADED = "E500"
    CONFIG_INVALID = "E600"
    UNKNOWN = "E999"


@dataclass
class ErrorContext:
    """Where an error happened.

    Attributes:
        context_name: Runtime context that was active or targeted.
        service: Service (container) name involved, if any.
        command: Runtime command that failed, if any.
        stderr: Captured stderr of that command.
        extra: Free-form details (diagnostics, log tails, ...).
    """

    context_name: str | None = None
    service: str | None = None
    command: list[str] | None = None
    stderr: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.context_name:
            data["context"] = self.context_name
        if self.service:
            data["service"] = self.service
        if self.command:
            data["command"] = " ".join(self.command)
        if self.stderr:
            data["stderr"] = self.stderr.strip()
        data.update(self.extra)
        return data


class LLMStackError(Exception):
    """Base class for all llmstack errors."""

    code: ErrorCode = ErrorCode.UNKNOWN
    fatal: bool = True
    default_remediation: str = ""

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        remediation: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.remediation = remediation if remediation is not None else self.default_remediation
        self.cause = cause

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "type": type(self).__name__,
            "message": self.message,
            "fatal": self.fatal,
            "remediation": self.remediation,
            "context": self.context.to_dict(),
        }


class RuntimeUnavailableError(LLMStackError):
    """The container daemon cannot be reached."""

    code = ErrorCode.RUNTIME_UNAVAILABLE
    default_remediation = "Start Docker (or Docker Desktop) and run this command again."


class ContextUnreachableError(RuntimeUnavailableError):
    """A context other than the current one cannot be listed. Collected, never raised."""

    fatal = False
    default_remediation = (
        "Its services were treated as absent. Start that context's daemon "
        "(for example Docker Desktop) if it should be checked."
    )


class PermissionDeniedError(LLMStackError):
    """The current user lacks rights to talk to the daemon."""

    code = ErrorCode.PERMISSION_DENIED
    default_remediation = (
        "Add yourself to the docker group: sudo usermod -aG docker $USER\n"
        "Then log out and back in (or run 'newgrp docker') and try again."
    )


class ContextSwitchError(LLMStackError):
    """The active runtime context could not be switched or restored."""

    code = ErrorCode.CONTEXT_SWITCH_FAILED
    default_remediation = (
        "Check 'docker context ls' and restore your context manually with "
        "'docker context use <name>'."
    )


class ServiceCleanupError(LLMStackError):
    """Stopping or removing a container failed. Collected, never raised."""

    code = ErrorCode.SERVICE_CLEANUP_FAILED
    fatal = False
    default_remediation = "Remove the container manually with 'docker rm -f <name>' if it gets in the way."


class LaunchError(LLMStackError):
    """docker compose could not bring the stack up."""

    code = ErrorCode.LAUNCH_FAILED
    default_remediation = "Inspect the diagnostics above, then try 'docker compose logs -f'."


class HealthDegradedError(LLMStackError):
    """A required service is unhealthy or not running after launch."""

    code = ErrorCode.HEALTH_DEGRADED
    fatal = False
    default_remediation = (
        "This is often a temporary startup issue. Wait a few minutes and check "
        "again with 'llmstack status'."
    )


class ConfigValidationError(LLMStackError):
    """A configuration value failed validation."""

    code = ErrorCode.CONFIG_INVALID

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any = None,
        context: ErrorContext | None = None,
    ) -> None:
        context = context or ErrorContext()
        if field is not None:
            context.extra.setdefault("field", field)
            context.extra.setdefault("value", value)
        super().__init__(message, context=context)
        self.field = field
        self.value = value
