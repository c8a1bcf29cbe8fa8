"""
tests/unit/tools/test_tool_registry.py

Tests for ToolRegistry: tool dispatch, argument checking and error mapping.
"""

from typing import Any

import pytest

from glassbox.data_models.browser import BrowserConnectionConfig
from glassbox.security.rate_limiter import MonitorContext, RateLimiter
from glassbox.tools import ToolRegistry, ToolSpec
from glassbox.utils.exceptions import UnknownToolError


@pytest.fixture
def registry(
    monitor_context: MonitorContext,
    browser_config: BrowserConnectionConfig,
    session_factory: Any,
) -> ToolRegistry:
    return ToolRegistry(config=browser_config, session_factory=session_factory, context=monitor_context)


class TestToolCatalogue:
    """
    Tests for the registered tools.
    """

    def test_every_monitor_has_start_and_stop(self, registry: ToolRegistry) -> None:
        names = set(registry.tool_names)
        for start, stop in [
            ("console_start_monitoring", "console_stop_monitoring"),
            ("network_start_monitoring", "network_stop_monitoring"),
            ("wcv_start_monitoring", "wcv_stop_monitoring"),
            ("file_start_tracking", "file_stop_tracking"),
        ]:
            assert start in names
            assert stop in names

    def test_browser_tools_registered(self, registry: ToolRegistry) -> None:
        assert {"browser_get_connection_status", "browser_take_screenshot", "browser_get_page_info"} <= set(
            registry.tool_names
        )

    def test_monitors_share_context_but_not_sessions(self, registry: ToolRegistry, monitor_context: MonitorContext) -> None:
        """One MonitorContext for all monitors, one SessionManager each."""
        monitors = list(registry.monitors.values())
        assert sorted(registry.monitors) == ["console", "file", "network", "wcv"]
        assert all(monitor.context is monitor_context for monitor in monitors)
        assert len({id(monitor.session_manager) for monitor in monitors}) == 4


class TestExecuteTool:
    """
    Tests for ToolRegistry.execute_tool.
    """

    @pytest.mark.asyncio
    async def test_unknown_tool_raises(self, registry: ToolRegistry) -> None:
        with pytest.raises(UnknownToolError, match="Unknown tool: console_explode"):
            await registry.execute_tool("console_explode", {})

    @pytest.mark.asyncio
    async def test_start_and_query(self, registry: ToolRegistry, fake_sessions: list[Any]) -> None:
        """A successful call returns its payload as content."""
        started = await registry.execute_tool("console_start_monitoring", {"url": "https://example.com"})
        assert started.is_error is False
        assert started.content["url"] == "https://example.com"

        await fake_sessions[0].emit(
            "Runtime.consoleAPICalled",
            {"type": "error", "args": [{"type": "string", "value": "boom"}]},
        )
        messages = await registry.execute_tool("console_get_messages", {"type": "error"})
        assert messages.tool_name == "console_get_messages"
        assert messages.content["filtered_count"] == 1
        assert messages.error is None

    @pytest.mark.asyncio
    async def test_tools_without_arguments(self, registry: ToolRegistry) -> None:
        """Omitted or None arguments both work for argument-less tools."""
        assert (await registry.execute_tool("network_clear_activity")).is_error is False
        assert (await registry.execute_tool("file_clear_tracking_data", None)).is_error is False

    @pytest.mark.asyncio
    async def test_unexpected_argument(self, registry: ToolRegistry) -> None:
        result = await registry.execute_tool("console_get_messages", {"type": "all", "verbose": True})
        assert result.is_error is True
        assert result.error == "Unexpected arguments for console_get_messages: ['verbose']"

    @pytest.mark.asyncio
    async def test_missing_required_argument(self, registry: ToolRegistry, fake_sessions: list[Any]) -> None:
        result = await registry.execute_tool("console_start_monitoring", {"headless": True})
        assert result.is_error is True
        assert result.error.startswith("Invalid arguments for console_start_monitoring")
        assert fake_sessions == []

    @pytest.mark.asyncio
    async def test_domain_errors_keep_their_message(self, registry: ToolRegistry) -> None:
        """GlassboxError subclasses are reported with their own message."""
        invalid_url = await registry.execute_tool("network_start_monitoring", {"url": "ftp://example.com"})
        assert invalid_url.is_error is True
        assert invalid_url.error == "Invalid URL: Protocol ftp: is not allowed"

        not_active = await registry.execute_tool("console_execute_script", {"script": "1 + 1"})
        assert not_active.error == "Console monitoring is not active. Start monitoring first."

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_generic(self, registry: ToolRegistry) -> None:
        """Anything outside the error hierarchy is hidden behind a generic message."""
        def explode() -> dict[str, Any]:
            raise KeyError("/home/alice/.ssh/id_rsa")

        registry._tools["console_clear_messages"] = ToolSpec("console_clear_messages", explode)
        result = await registry.execute_tool("console_clear_messages")

        assert result.is_error is True
        assert result.error == ToolRegistry.GENERIC_ERROR_MESSAGE
        assert "alice" not in result.model_dump_json()

    @pytest.mark.asyncio
    async def test_rate_limit_reported(self, registry: ToolRegistry, monitor_context: MonitorContext) -> None:
        for _ in range(10):
            monitor_context.rate_limiter.check("wcv:start", max_requests=10, window_seconds=60)
        result = await registry.execute_tool("wcv_start_monitoring", {"url": "https://example.com"})
        assert result.is_error is True
        assert "Rate limit exceeded for wcv:start" in result.error

    @pytest.mark.asyncio
    async def test_expired_rate_windows_swept(self, browser_config: BrowserConnectionConfig, session_factory: Any) -> None:
        """Each invocation sweeps rate windows that have run out."""
        now = {"value": 0.0}
        context = MonitorContext(rate_limiter=RateLimiter(clock=lambda: now["value"]))
        registry = ToolRegistry(config=browser_config, session_factory=session_factory, context=context)

        context.rate_limiter.check("interaction", window_seconds=60)
        now["value"] = 120.0
        await registry.execute_tool("console_get_messages")
        assert "interaction" not in context.rate_limiter


class TestBrowserTools:
    """
    Tests for connection status, screenshot and page info tools.
    """

    @pytest.mark.asyncio
    async def test_connection_status(self, registry: ToolRegistry) -> None:
        await registry.execute_tool("network_start_monitoring", {"url": "https://example.com"})

        everything = await registry.execute_tool("browser_get_connection_status")
        connections = everything.content["connections"]
        assert set(connections) == {"console", "network", "wcv", "file"}
        assert connections["network"]["connected"] is True
        assert connections["console"]["connected"] is False

        one = await registry.execute_tool("browser_get_connection_status", {"monitor": "network"})
        assert list(one.content["connections"]) == ["network"]

        bogus = await registry.execute_tool("browser_get_connection_status", {"monitor": "gpu"})
        assert bogus.is_error is True
        assert bogus.error.startswith("Invalid monitor: gpu")

    @pytest.mark.asyncio
    async def test_screenshot_uses_first_active_monitor(self, registry: ToolRegistry) -> None:
        nothing_active = await registry.execute_tool("browser_take_screenshot")
        assert nothing_active.error == "No monitor is active. Start monitoring first."

        await registry.execute_tool("network_start_monitoring", {"url": "https://example.com"})
        screenshot = await registry.execute_tool("browser_take_screenshot")
        assert screenshot.content["data"] == "iVBORw0KGgo="
        assert screenshot.content["url"] == "https://example.com"

        idle_monitor = await registry.execute_tool("browser_take_screenshot", {"monitor": "console"})
        assert idle_monitor.is_error is True

    @pytest.mark.asyncio
    async def test_page_info_dumped(self, registry: ToolRegistry, fake_sessions: list[Any]) -> None:
        """Model results are converted to plain dicts."""
        await registry.execute_tool("console_start_monitoring", {"url": "https://example.com"})
        fake_sessions[0].evaluate_handler = lambda expression: {
            "title": "Example Domain",
            "url": "https://example.com/",
            "readyState": "interactive",
        }

        result = await registry.execute_tool("browser_get_page_info", {"monitor": "console"})
        assert result.content["title"] == "Example Domain"
        assert result.content["ready_state"] == "interactive"


class TestShutdown:
    """
    Tests for ToolRegistry.shutdown.
    """

    @pytest.mark.asyncio
    async def test_shutdown_stops_monitors_and_timers(
        self,
        registry: ToolRegistry,
        monitor_context: MonitorContext,
        fake_sessions: list[Any],
    ) -> None:
        await registry.execute_tool("console_start_monitoring", {"url": "https://example.com"})
        await registry.execute_tool("wcv_start_monitoring", {"url": "https://example.com", "continuous": True})
        assert len(monitor_context.timers) == 1

        await registry.shutdown()

        assert all(not monitor.is_active for monitor in registry.monitors.values())
        assert all(session.closed for session in fake_sessions)
        assert len(monitor_context.timers) == 0

    @pytest.mark.asyncio
    async def test_shutdown_when_idle(self, registry: ToolRegistry) -> None:
        await registry.shutdown()
