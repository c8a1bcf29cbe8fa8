"""
glassbox/tools/__init__.py

Tool invocation boundary.
"""

from glassbox.tools.tool_registry import ToolRegistry, ToolSpec

__all__ = [
    "ToolRegistry",
    "ToolSpec",
]
