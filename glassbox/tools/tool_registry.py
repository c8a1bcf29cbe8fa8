"""
glassbox/tools/tool_registry.py

Tool invocation boundary: maps tool names to monitor operations and turns their outcome into a ToolResult.

Contains:
- ToolSpec: One registered tool (handler + accepted argument names)
- ToolRegistry: Owns the four monitors and their shared MonitorContext
"""

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from pydantic import BaseModel

from glassbox.cdp.filesystem import FilesystemWatcher
from glassbox.cdp.monitors import (
    AbstractAsyncMonitor,
    AsyncConsoleMonitor,
    AsyncFileMonitor,
    AsyncNetworkMonitor,
    AsyncVitalsMonitor,
    AuditScorer,
)
from glassbox.cdp.session_manager import SessionFactory
from glassbox.data_models.browser import BrowserConnectionConfig, PageInfo
from glassbox.data_models.tools import ToolResult
from glassbox.security.rate_limiter import MonitorContext
from glassbox.utils.exceptions import GlassboxError, InputValidationError, MonitorNotActiveError, UnknownToolError
from glassbox.utils.logger import get_logger

logger = get_logger(name=__name__)


@dataclass(frozen=True)
class ToolSpec:
    """A registered tool: the coroutine/function to call and the argument names it accepts."""
    name: str
    handler: Callable[..., Any | Awaitable[Any]]
    arguments: tuple[str, ...] = ()


class ToolRegistry:
    """
    Maps tool names to monitor operations.
    Every monitor gets its own browser session; rate windows and timers are shared through one MonitorContext.
    """

    GENERIC_ERROR_MESSAGE = "Internal error while executing tool"

    def __init__(
        self,
        config: BrowserConnectionConfig | None = None,
        session_factory: SessionFactory | None = None,
        audit_scorer: AuditScorer | None = None,
        watcher: FilesystemWatcher | None = None,
        context: MonitorContext | None = None,
    ) -> None:
        """
        Initialize the registry and its monitors.
        Args:
            config: Browser connection configuration; defaults to BrowserConnectionConfig.from_env().
            session_factory: Optional session factory passed to every monitor's SessionManager.
            audit_scorer: Audit engine for wcv_run_audit.
            watcher: Filesystem watcher for file_watch_filesystem.
            context: Shared rate-limit and timer services.
        """
        self.context = context or MonitorContext()
        config = config or BrowserConnectionConfig.from_env()
        common = {"context": self.context, "config": config, "session_factory": session_factory}

        self.console_monitor = AsyncConsoleMonitor(**common)
        self.network_monitor = AsyncNetworkMonitor(**common)
        self.vitals_monitor = AsyncVitalsMonitor(**common, audit_scorer=audit_scorer)
        self.file_monitor = AsyncFileMonitor(**common, watcher=watcher)

        self.monitors: dict[str, AbstractAsyncMonitor] = {
            monitor.TOOL_PREFIX: monitor
            for monitor in (self.console_monitor, self.network_monitor, self.vitals_monitor, self.file_monitor)
        }
        self._tools: dict[str, ToolSpec] = {spec.name: spec for spec in self._build_tools()}

    def _build_tools(self) -> list[ToolSpec]:
        console, network, vitals, files = (
            self.console_monitor,
            self.network_monitor,
            self.vitals_monitor,
            self.file_monitor,
        )
        return [
            # console
            ToolSpec("console_start_monitoring", console.start, ("url", "headless")),
            ToolSpec("console_get_messages", console.get_messages, ("type", "limit")),
            ToolSpec("console_clear_messages", console.clear_messages),
            ToolSpec("console_execute_script", console.execute_script, ("script",)),
            ToolSpec("console_stop_monitoring", console.stop),
            # network
            ToolSpec("network_start_monitoring", network.start, ("url", "headless", "intercept_requests")),
            ToolSpec("network_get_activity", network.get_activity, ("filter", "resource_type", "limit")),
            ToolSpec("network_get_performance_metrics", network.get_performance_metrics),
            ToolSpec("network_navigate", network.navigate, ("url", "wait_until")),
            ToolSpec("network_clear_activity", network.clear_activity),
            ToolSpec("network_stop_monitoring", network.stop),
            # web core vitals
            ToolSpec("wcv_start_monitoring", vitals.start, ("url", "headless", "continuous")),
            ToolSpec("wcv_measure_vitals", vitals.measure_vitals, ("wait_seconds",)),
            ToolSpec("wcv_run_audit", vitals.run_audit, ("categories", "device")),
            ToolSpec("wcv_get_vitals_history", vitals.get_vitals_history, ("limit",)),
            ToolSpec("wcv_get_performance_entries", vitals.get_performance_entries, ("entry_type",)),
            ToolSpec("wcv_simulate_user_interaction", vitals.simulate_interaction, ("action", "target")),
            ToolSpec("wcv_stop_monitoring", vitals.stop),
            # files
            ToolSpec("file_start_tracking", files.start, ("url", "headless", "download_path", "capture_content")),
            ToolSpec("file_get_resources", files.get_resources, ("type", "min_size", "max_size", "limit")),
            ToolSpec("file_download_resource", files.download_resource, ("url", "filename")),
            ToolSpec("file_get_downloads", files.get_downloads, ("limit",)),
            ToolSpec("file_analyze_resource", files.analyze_resource, ("url",)),
            ToolSpec("file_watch_filesystem", files.watch_filesystem, ("paths",)),
            ToolSpec("file_get_filesystem_changes", files.get_filesystem_changes, ("limit",)),
            ToolSpec("file_clear_tracking_data", files.clear_tracking_data),
            ToolSpec("file_stop_tracking", files.stop),
            # browser
            ToolSpec("browser_get_connection_status", self.get_connection_status, ("monitor",)),
            ToolSpec("browser_take_screenshot", self.take_screenshot, ("monitor",)),
            ToolSpec("browser_get_page_info", self.get_page_info, ("monitor",)),
        ]

    def _get_monitor(self, prefix: str) -> AbstractAsyncMonitor:
        monitor = self.monitors.get(prefix)
        if monitor is None:
            raise InputValidationError(f"Invalid monitor: {prefix}. Expected one of {list(self.monitors)}")
        return monitor

    def _get_active_monitor(self, prefix: str | None) -> AbstractAsyncMonitor:
        """The named monitor (its own methods check that it is active), else the first active one."""
        if prefix:
            return self._get_monitor(prefix)
        for candidate in self.monitors.values():
            if candidate.is_active:
                return candidate
        raise MonitorNotActiveError("No monitor is active. Start monitoring first.")

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    async def get_connection_status(self, monitor: str | None = None) -> dict[str, Any]:
        """Connection status of one monitor's session, or of all of them."""
        prefixes = [monitor] if monitor else list(self.monitors)
        statuses: dict[str, Any] = {}
        for prefix in prefixes:
            status = await self._get_monitor(prefix).session_manager.get_connection_status()
            statuses[prefix] = status.model_dump(mode="json")
        return {"connections": statuses}

    async def take_screenshot(self, monitor: str | None = None) -> dict[str, Any]:
        """Screenshot the page of the given monitor, or of the first active one."""
        return await self._get_active_monitor(monitor).capture_screenshot()

    async def get_page_info(self, monitor: str | None = None) -> PageInfo:
        """Title, URL and ready state of the given monitor's page, or of the first active one."""
        return await self._get_active_monitor(monitor).get_page_info()

    async def execute_tool(self, tool_name: str, arguments: dict[str, Any] | None = None) -> ToolResult:
        """
        Execute a tool and return its result.
        Args:
            tool_name: Registered tool name.
            arguments: Tool arguments keyed by name.
        Returns:
            ToolResult with content on success, or is_error and a caller-safe message on failure.
        Raises:
            UnknownToolError: If tool_name is not registered.
        """
        spec = self._tools.get(tool_name)
        if spec is None:
            raise UnknownToolError(f"Unknown tool: {tool_name}")
        arguments = arguments or {}
        logger.debug("Executing tool %s with arguments: %s", tool_name, list(arguments))
        self.context.rate_limiter.cleanup()

        try:
            unexpected = sorted(set(arguments) - set(spec.arguments))
            if unexpected:
                raise InputValidationError(f"Unexpected arguments for {tool_name}: {unexpected}")
            try:
                inspect.signature(spec.handler).bind(**arguments)
            except TypeError as e:
                raise InputValidationError(f"Invalid arguments for {tool_name}: {e}") from e
            result = spec.handler(**arguments)
            if inspect.isawaitable(result):
                result = await result
        except GlassboxError as e:
            logger.info("⚠️ Tool %s failed: %s", tool_name, e)
            return ToolResult(tool_name=tool_name, is_error=True, error=str(e))
        except Exception as e:
            logger.error("❌ Tool %s raised: %s", tool_name, e, exc_info=True)
            return ToolResult(tool_name=tool_name, is_error=True, error=self.GENERIC_ERROR_MESSAGE)

        if isinstance(result, BaseModel):
            result = result.model_dump(mode="json")
        return ToolResult(tool_name=tool_name, content=result)

    async def shutdown(self) -> None:
        """Stop every monitor and cancel all timers."""
        for monitor in self.monitors.values():
            await monitor.stop()
        self.context.timers.clear_all()
        logger.info("🛑 All monitors stopped")
