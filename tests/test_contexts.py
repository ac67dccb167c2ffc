"""Tests for context enumeration and scoped context switching."""

from __future__ import annotations

import pytest

from llmstack.errors import ContextSwitchError, RuntimeUnavailableError
from llmstack.infra import ContextInfo, DockerError
from llmstack.runtime import ActiveContext, Context, list_contexts
from tests.conftest import FakeRuntime


class TestListContexts:
    """Tests for list_contexts."""

    def test_returns_current_and_all_in_runtime_order(self, runtime: FakeRuntime) -> None:
        current, contexts = list_contexts(runtime)

        assert current == Context(name="default", is_current=True)
        assert [c.name for c in contexts] == ["default", "desktop-linux"]
        assert current in contexts

    def test_falls_back_to_current_context_when_none_flagged(self, runtime: FakeRuntime) -> None:
        runtime.list_contexts = lambda: [ContextInfo("default"), ContextInfo("desktop-linux")]
        runtime.current = "desktop-linux"

        current, contexts = list_contexts(runtime)

        assert current.name == "desktop-linux"
        assert [c.name for c in contexts if c.is_current] == ["desktop-linux"]

    def test_daemon_error_is_runtime_unavailable(self, runtime: FakeRuntime) -> None:
        def broken() -> list[ContextInfo]:
            raise DockerError("Docker command failed: context ls", stderr="Cannot connect")

        runtime.list_contexts = broken

        with pytest.raises(RuntimeUnavailableError) as exc_info:
            list_contexts(runtime)

        assert exc_info.value.fatal is True
        assert exc_info.value.context.stderr == "Cannot connect"

    def test_unflagged_and_unknown_current_context(self, runtime: FakeRuntime) -> None:
        runtime.list_contexts = lambda: [ContextInfo("default"), ContextInfo("desktop-linux")]
        runtime.fail_current_context = True

        with pytest.raises(ContextSwitchError):
            list_contexts(runtime)


class TestSwitchedTo:
    """Tests for ActiveContext.switched_to."""

    def test_switches_and_restores(self, runtime: FakeRuntime) -> None:
        active = ActiveContext(runtime)

        with active.switched_to(Context("desktop-linux")) as name:
            assert name == "desktop-linux"
            assert runtime.current == "desktop-linux"

        assert runtime.current == "default"

    def test_restores_when_block_raises(self, runtime: FakeRuntime) -> None:
        active = ActiveContext(runtime)

        with pytest.raises(RuntimeError):
            with active.switched_to("desktop-linux"):
                raise RuntimeError("boom")

        assert runtime.current == "default"

    def test_same_context_does_not_switch(self, runtime: FakeRuntime) -> None:
        with ActiveContext(runtime).switched_to("default"):
            pass

        assert runtime.ops("use") == []

    def test_failed_switch_raises_and_stays_on_original(self, runtime: FakeRuntime) -> None:
        runtime.fail_use.add("desktop-linux")

        with pytest.raises(ContextSwitchError) as exc_info:
            with ActiveContext(runtime).switched_to("desktop-linux"):
                pytest.fail("block must not run")

        assert exc_info.value.context.context_name == "desktop-linux"
        assert runtime.current == "default"

    def test_failed_restore_is_fatal(self, runtime: FakeRuntime) -> None:
        runtime.fail_restore_to = "default"

        with pytest.raises(ContextSwitchError) as exc_info:
            with ActiveContext(runtime).switched_to("desktop-linux"):
                pass

        assert exc_info.value.fatal is True
        assert "docker context use default" in exc_info.value.remediation

    def test_unknown_original_context_refuses_to_switch(self, runtime: FakeRuntime) -> None:
        runtime.fail_current_context = True

        with pytest.raises(ContextSwitchError) as exc_info:
            with ActiveContext(runtime).switched_to("desktop-linux"):
                pytest.fail("block must not run")

        assert "active Docker context" in exc_info.value.message
        assert runtime.ops("use") == []
        assert runtime.current == "default"


class TestUse:
    """Tests for the permanent ActiveContext.use switch."""

    def test_use_switches_without_restoring(self, runtime: FakeRuntime) -> None:
        ActiveContext(runtime).use("desktop-linux")

        assert runtime.current == "desktop-linux"

    def test_use_unknown_context(self, runtime: FakeRuntime) -> None:
        with pytest.raises(ContextSwitchError):
            ActiveContext(runtime).use("nope")
