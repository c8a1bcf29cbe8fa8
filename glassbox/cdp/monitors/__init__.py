"""
glassbox/cdp/monitors/__init__.py

Async CDP monitors for capturing browser telemetry.
"""

from glassbox.cdp.monitors.abstract_async_monitor import AbstractAsyncMonitor
from glassbox.cdp.monitors.async_console_monitor import AsyncConsoleMonitor
from glassbox.cdp.monitors.async_file_monitor import AsyncFileMonitor
from glassbox.cdp.monitors.async_network_monitor import AsyncNetworkMonitor
from glassbox.cdp.monitors.async_vitals_monitor import AsyncVitalsMonitor, AuditScorer, ThresholdAuditScorer

__all__ = [
    "AbstractAsyncMonitor",
    "AsyncConsoleMonitor",
    "AsyncFileMonitor",
    "AsyncNetworkMonitor",
    "AsyncVitalsMonitor",
    "AuditScorer",
    "ThresholdAuditScorer",
]
