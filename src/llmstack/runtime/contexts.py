"""Context enumeration and scoped switching of the active runtime context.

The runtime's active context is global, process-wide state: switching it
redirects every later docker command, including the user's own. All
switching therefore goes through ``ActiveContext.switched_to``, which
restores the original context on every exit path.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from llmstack.errors import ContextSwitchError, ErrorContext, RuntimeUnavailableError
from llmstack.infra.base import ContainerRuntime
from llmstack.infra.docker import DockerError
from llmstack.runtime.service import Context

logger = logging.getLogger(__name__)


def list_contexts(runtime: ContainerRuntime) -> tuple[Context, list[Context]]:
    """Enumerate every runtime context and the current one.

    Returns:
        ``(current, all_contexts)``; ``all_contexts`` keeps the runtime's
        enumeration order and contains ``current``.

    Raises:
        RuntimeUnavailableError: The daemon cannot be reached.
        ContextSwitchError: No entry is flagged current and the runtime
            cannot name the active context.
    """
    try:
        infos = runtime.list_contexts()
    except DockerError as e:
        raise RuntimeUnavailableError(
            "Could not enumerate Docker contexts",
            context=ErrorContext(command=e.command, stderr=e.stderr),
            cause=e,
        ) from e

    contexts = [Context(name=info.name, is_current=info.current) for info in infos]
    current = next((c for c in contexts if c.is_current), None)
    if current is None:
        # Some runtimes do not flag the current entry; ask directly.
        name = ActiveContext(runtime).name
        contexts = [Context(name=c.name, is_current=c.name == name) for c in contexts]
        current = next((c for c in contexts if c.is_current), None)
        if current is None:
            current = Context(name=name, is_current=True)
            contexts.append(current)

    logger.debug(f"Contexts: {[c.name for c in contexts]} (current: {current.name})")
    return current, contexts


class ActiveContext:
    """Handle on the runtime's active-context pointer.

    Example::

        handle = ActiveContext(runtime)
        with handle.switched_to(other):
            runtime.list_containers("ollama")
        # the original context is active again here, even on error
    """

    def __init__(self, runtime: ContainerRuntime) -> None:
        self._runtime = runtime

    @property
    def name(self) -> str:
        """Name of the active context.

        Raises:
            ContextSwitchError: The runtime cannot report it, so there is no
                known context to come back to.
        """
        try:
            return self._runtime.current_context()
        except DockerError as e:
            raise ContextSwitchError(
                "Could not determine the active Docker context",
                context=ErrorContext(command=e.command, stderr=e.stderr),
                remediation="Check 'docker context show' and select one with 'docker context use <name>'.",
                cause=e,
            ) from e

    def use(self, name: str) -> None:
        """Switch permanently (no restore)."""
        try:
            self._runtime.use_context(name)
        except DockerError as e:
            raise ContextSwitchError(
                f"Could not switch to Docker context '{name}'",
                context=ErrorContext(context_name=name, command=e.command, stderr=e.stderr),
                cause=e,
            ) from e
        logger.info(f"Switched Docker context to '{name}'")

    @contextmanager
    def switched_to(self, target: Context | str) -> Iterator[str]:
        """Make ``target`` active for the duration of the block.

        Raises:
            ContextSwitchError: ``target`` could not be activated, or the
                original context could not be restored afterwards.
        """
        target_name = target.name if isinstance(target, Context) else target
        original = self.name

        if target_name == original:
            yield original
            return

        try:
            logger.debug(f"Switching context {original!r} -> {target_name!r}")
            try:
                self._runtime.use_context(target_name)
            except DockerError as e:
                raise ContextSwitchError(
                    f"Could not switch to Docker context '{target_name}'",
                    context=ErrorContext(context_name=target_name, command=e.command, stderr=e.stderr),
                    cause=e,
                ) from e
            yield target_name
        finally:
            self._restore(original)

    def _restore(self, original: str) -> None:
        try:
            self._runtime.use_context(original)
        except DockerError as e:
            raise ContextSwitchError(
                f"Could not restore Docker context '{original}'",
                context=ErrorContext(context_name=original, command=e.command, stderr=e.stderr),
                remediation=f"Run 'docker context use {original}' before any other docker command.",
                cause=e,
            ) from e
        logger.debug(f"Restored context {original!r}")
