"""
Glassbox - Inspect a live browser page through remotely invokable tools.

Usage:
    from glassbox import ToolRegistry

    registry = ToolRegistry()
    await registry.execute_tool("console_start_monitoring", {"url": "https://example.com"})
    result = await registry.execute_tool("console_get_messages", {"type": "error"})
    await registry.shutdown()
"""

__version__ = "0.1.0"

# Public API
from .tools.tool_registry import ToolRegistry

# Monitors - for direct use without the tool boundary
from .cdp.monitors import (
    AsyncConsoleMonitor,
    AsyncFileMonitor,
    AsyncNetworkMonitor,
    AsyncVitalsMonitor,
    AuditScorer,
)
from .cdp.session_manager import SessionManager
from .security.rate_limiter import MonitorContext

# Data models
from .data_models.browser import BrowserConnectionConfig
from .data_models.tools import ToolResult

# Exceptions
from .utils.exceptions import (
    GlassboxError,
    InputValidationError,
    MonitorNotActiveError,
    RateLimitedError,
    UpstreamError,
    UnknownToolError,
)

__all__ = [
    # High-level API
    "ToolRegistry",
    # Monitors
    "AsyncConsoleMonitor",
    "AsyncFileMonitor",
    "AsyncNetworkMonitor",
    "AsyncVitalsMonitor",
    "AuditScorer",
    "SessionManager",
    "MonitorContext",
    # Data models
    "BrowserConnectionConfig",
    "ToolResult",
    # Exceptions
    "GlassboxError",
    "InputValidationError",
    "MonitorNotActiveError",
    "RateLimitedError",
    "UpstreamError",
    "UnknownToolError",
]
