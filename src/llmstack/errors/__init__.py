"""llmstack error handling.

Fatal errors abort the workflow with a remediation hint; non-fatal errors
(cleanup failures, degraded health) are collected and reported at the end.
"""

from llmstack.errors.base import (
    ConfigValidationError,
    ContextSwitchError,
    ContextUnreachableError,
    ErrorCode,
    ErrorContext,
    HealthDegradedError,
    LaunchError,
    LLMStackError,
    PermissionDeniedError,
    RuntimeUnavailableError,
    ServiceCleanupError,
)

__all__ = [
    # Base
    "LLMStackError",
    "ErrorCode",
    "ErrorContext",
    # Fatal
    "RuntimeUnavailableError",
    "PermissionDeniedError",
    "ContextSwitchError",
    "LaunchError",
    "ConfigValidationError",
    # Non-fatal
    "ContextUnreachableError",
    "ServiceCleanupError",
    "HealthDegradedError",
]
